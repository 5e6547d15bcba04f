from __future__ import annotations

from langchain_text_splitters import RecursiveCharacterTextSplitter

from citewise.config import settings
from citewise.models.search import Chunk, ExtractedDocument

SEPARATORS = ["\n\n", "\n", ". ", "? ", "! ", " ", ""]


class TextChunker:
    """Recursive structural splitter with trailing overlap between chunks."""

    def __init__(self, chunk_size: int | None = None, chunk_overlap: int | None = None):
        self.chunk_size = max(int(chunk_size or settings.chunk_size), 1)
        overlap = int(chunk_overlap if chunk_overlap is not None else settings.chunk_overlap)
        self.chunk_overlap = min(max(overlap, 0), self.chunk_size - 1)
        self.splitter = RecursiveCharacterTextSplitter(
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            length_function=len,
            separators=SEPARATORS,
        )

    def split_text(self, text: str) -> list[str]:
        if not text or not text.strip():
            return []
        chunks = self.splitter.split_text(text)
        return [c.strip() for c in chunks if c.strip()]

    def chunk(self, document: ExtractedDocument) -> list[Chunk]:
        return [
            Chunk(
                source_url=document.url,
                source_title=document.title,
                text=text,
                ordinal=ordinal,
            )
            for ordinal, text in enumerate(self.split_text(document.usable_text))
        ]

    def chunk_all(self, documents: list[ExtractedDocument]) -> list[Chunk]:
        chunks: list[Chunk] = []
        for document in documents:
            chunks.extend(self.chunk(document))
        return chunks
