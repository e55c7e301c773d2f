"""Token-budgeted context assembly over ranked search candidates."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace

from kb_agent.errors import AssemblyError
from kb_agent.retrieval.tokenizer import Tokenizer, count_tokens
from kb_agent.types import ContextBundle, SearchCandidate, SourceMetadata

logger = logging.getLogger(__name__)

_SUMMARY_TEMPLATE = (
    "Processed {used} out of {available} total chunks.\n"
    "Summary: {content}\n"
    "Filename: {filename}\n"
    "File URL: {file_url}"
)


def format_document(description: str) -> str:
    """Wrap one chunk in the provenance tag the prompt refers to."""
    return f"<context>{description}</context>"


@dataclass(frozen=True, slots=True)
class _Fold:
    """Accumulator threaded through the candidate fold. Never mutated."""

    included: tuple[SearchCandidate, ...] = ()
    pieces: tuple[str, ...] = ()
    piece_tokens: tuple[int, ...] = ()
    processed: int = 0
    max_total_chunks: int = 0
    truncated: bool = False

    @property
    def used_tokens(self) -> int:
        return sum(self.piece_tokens)

    @property
    def chunks_used(self) -> int:
        return len(self.included)

    @property
    def chunks_available(self) -> int:
        # Indexes without totalChunks report 0; never claim fewer than we used.
        return max(self.max_total_chunks, self.chunks_used)

    @property
    def filename(self) -> str:
        return next((c.filename for c in self.included if c.filename), "")

    @property
    def file_url(self) -> str:
        return next((c.file_url for c in self.included if c.file_url), "")

    def observe(self, candidate: SearchCandidate) -> "_Fold":
        return replace(
            self,
            processed=self.processed + 1,
            max_total_chunks=max(self.max_total_chunks, candidate.total_chunks),
        )

    def include(self, candidate: SearchCandidate, piece: str, tokens: int) -> "_Fold":
        return replace(
            self,
            included=self.included + (candidate,),
            pieces=self.pieces + (piece,),
            piece_tokens=self.piece_tokens + (tokens,),
        )

    def stop(self) -> "_Fold":
        return replace(self, truncated=True)

    def drop_last(self) -> "_Fold":
        return replace(
            self,
            included=self.included[:-1],
            pieces=self.pieces[:-1],
            piece_tokens=self.piece_tokens[:-1],
            truncated=True,
        )


class ContextAssembler:
    """Builds a `ContextBundle` whose token count never exceeds the budget.

    Algorithm:
    1. Empty input yields an empty, non-truncated bundle.
    2. Candidates are folded in the order received. Each description is wrapped
       with `format_document` and tokenized; the fold stops at the first chunk
       that would push the running total past `max_tokens` and marks the
       result truncated. Partial chunks are never included.
    3. `chunks_available` is the largest `total_chunks` seen on any processed
       candidate, including the one that stopped the fold.
    4. The summary string is rendered and tokenized as a whole. When the
       wrapper pushes it over budget, trailing chunks are dropped until it fits.

    The assembler holds no per-call state, so identical inputs always produce
    identical bundles.
    """

    def assemble(
        self,
        candidates: Sequence[SearchCandidate],
        tokenizer: Tokenizer,
        max_tokens: int,
    ) -> ContextBundle:
        if not candidates:
            return ContextBundle.empty()
        if max_tokens < 1:
            raise AssemblyError("max_tokens must be positive", details={"max_tokens": max_tokens})

        try:
            fold = self._fold(candidates, tokenizer, max_tokens)
            bundle = self._finalize(fold, tokenizer, max_tokens)
        except AssemblyError:
            raise
        except Exception as exc:
            raise AssemblyError(
                f"Failed to assemble context: {exc}",
                details={"candidate_count": len(candidates), "max_tokens": max_tokens},
            ) from exc

        logger.debug(
            "assembled context",
            extra={
                "candidate_count": len(candidates),
                "processed_count": fold.processed,
                "chunks_used": bundle.source_metadata.chunks_used,
                "chunks_available": bundle.source_metadata.chunks_available,
                "output_tokens": bundle.token_count,
                "truncated": bundle.truncated,
            },
        )
        return bundle

    def _fold(
        self,
        candidates: Sequence[SearchCandidate],
        tokenizer: Tokenizer,
        max_tokens: int,
    ) -> _Fold:
        acc = _Fold()
        for candidate in candidates:
            acc = acc.observe(candidate)
            piece = format_document(candidate.description)
            tokens = count_tokens(tokenizer, piece)
            if acc.used_tokens + tokens > max_tokens:
                return acc.stop()
            acc = acc.include(candidate, piece, tokens)
        return acc

    def _finalize(self, fold: _Fold, tokenizer: Tokenizer, max_tokens: int) -> ContextBundle:
        acc = fold
        while True:
            text = self._render(acc, max_tokens)
            token_count = count_tokens(tokenizer, text)
            if token_count <= max_tokens:
                return ContextBundle(
                    output_text=text,
                    token_count=token_count,
                    truncated=acc.truncated,
                    source_metadata=SourceMetadata(
                        filename=acc.filename,
                        file_url=acc.file_url,
                        chunks_used=acc.chunks_used,
                        chunks_available=acc.chunks_available,
                    ),
                )
            if not acc.included:
                # Budget too small for even the summary wrapper.
                return ContextBundle(
                    output_text="",
                    token_count=0,
                    truncated=True,
                    source_metadata=SourceMetadata(chunks_available=acc.chunks_available),
                )
            acc = acc.drop_last()

    @staticmethod
    def _render(acc: _Fold, max_tokens: int) -> str:
        content = "".join(f"{piece} " for piece in acc.pieces)
        return _SUMMARY_TEMPLATE.format(
            used=acc.chunks_used,
            available=acc.chunks_available,
            # Character cap on top of the token cap.
            content=content[:max_tokens],
            filename=acc.filename,
            file_url=acc.file_url,
        )
