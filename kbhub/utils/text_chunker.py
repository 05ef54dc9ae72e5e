"""Text chunking utilities for splitting documents into embeddable pieces."""
import re
from typing import List, Dict, Optional, Any


class TextChunker:
    """Split text into overlapping chunks with metadata."""

    DEFAULT_CHUNK_SIZE = 1000  # characters
    DEFAULT_OVERLAP = 200  # characters

    @staticmethod
    def chunk_text(
        text: Optional[str],
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        overlap: int = DEFAULT_OVERLAP,
    ) -> List[Dict[str, Any]]:
        """
        Split text into overlapping chunks.

        Paragraphs are packed together up to ``chunk_size``; a paragraph longer
        than ``chunk_size - overlap`` is split by sentences (and a sentence that still
        exceeds it, by characters). Every new chunk starts with the last
        ``overlap`` characters of the previous one.

        Args:
            text: Extracted document text
            chunk_size: Maximum size of each chunk in characters
            overlap: Number of overlapping characters between chunks

        Returns:
            Ordered list of ``{"text", "index", "metadata"}`` dictionaries.
            Empty input yields an empty list.
        """
        if not text or not text.strip():
            return []
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if overlap < 0 or overlap >= chunk_size:
            raise ValueError("overlap must be between 0 and chunk_size")

        paragraphs = TextChunker._split_into_paragraphs(text)

        pieces: List[str] = []
        current_chunk = ""

        def flush(next_piece: str, separator: str) -> str:
            if current_chunk.strip():
                pieces.append(current_chunk.strip())
            # Start new chunk with overlap
            if overlap > 0 and len(current_chunk) > overlap:
                return current_chunk[-overlap:] + next_piece + separator
            return next_piece + separator

        for para in paragraphs:
            # Leave room for the overlap carried into the next chunk
            if len(para) > chunk_size - overlap:
                for sentence in TextChunker._split_into_sentences(para, chunk_size - overlap):
                    if len(current_chunk) + len(sentence) <= chunk_size:
                        current_chunk += sentence + " "
                    else:
                        current_chunk = flush(sentence, " ")
            elif len(current_chunk) + len(para) <= chunk_size:
                current_chunk += para + "\n\n"
            else:
                current_chunk = flush(para, "\n\n")

        # Add final chunk
        if current_chunk.strip():
            pieces.append(current_chunk.strip())

        chunks = []
        for piece in pieces:
            chunk = TextChunker._create_chunk_dict(piece, len(chunks))
            # A piece holding nothing but a page marker carries no content
            if chunk['text']:
                chunks.append(chunk)
        return chunks

    @staticmethod
    def _split_into_paragraphs(text: str) -> List[str]:
        """Split text into paragraphs."""
        paragraphs = re.split(r'\n\s*\n+', text)
        return [p.strip() for p in paragraphs if p.strip()]

    @staticmethod
    def _split_into_sentences(text: str, max_len: int) -> List[str]:
        """Split text into sentences no longer than ``max_len`` characters."""
        sentences = []
        for sentence in re.split(r'(?<=[.!?])\s+', text):
            sentence = sentence.strip()
            if not sentence:
                continue
            while len(sentence) > max_len:
                sentences.append(sentence[:max_len])
                sentence = sentence[max_len:]
            sentences.append(sentence)
        return sentences

    @staticmethod
    def _create_chunk_dict(text: str, index: int) -> Dict[str, Any]:
        """Create a chunk dictionary with metadata."""
        # Page markers come from the PDF extractor
        page_match = re.search(r'\[Page (\d+)\]', text)
        page_number = int(page_match.group(1)) if page_match else None

        clean_text = re.sub(r'\[Page \d+\]\n?', '', text).strip()

        return {
            'text': clean_text,
            'index': index,
            'metadata': {
                'page_number': page_number,
                'char_count': len(clean_text),
            },
        }
