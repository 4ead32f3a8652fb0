"""
Page segmentation: splits page text and extracted file text into ordered,
metadata-tagged segments ahead of embedding-sized chunking
"""
import math
import re
import time
from typing import List, Optional
import structlog
from langchain_text_splitters import RecursiveCharacterTextSplitter

from pagerag.models.content import ContentType, Difficulty, Segment, SegmentMetadata
from pagerag.services.config import Settings
from pagerag.utils.text import han_char_ratio, sentence_count, word_count

logger = structlog.get_logger()

# Section breaks first, character level last
SEPARATORS = [
    "\n\n\n",
    "\n\n",
    "\n",
    ". ",
    "! ",
    "? ",
    "; ",
    ", ",
    " ",
    "",
]

PDF_MIME_TYPE = "application/pdf"
MAX_SECTION_TITLE_LENGTH = 100

_NUMBERED_TITLE_RE = re.compile(r"^[0-9]+\.")
_HANGUL_LABEL_TITLE_RE = re.compile(r"^[가-힣]+\s*[0-9]*[.:]")
_MARKDOWN_TITLE_RE = re.compile(r"^#{1,6}\s")


class PageSegmenter:
    """Segmenter for text, file and mixed pages"""

    def __init__(self, settings: Settings):
        self.settings = settings

    def _splitter(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None
    ) -> RecursiveCharacterTextSplitter:
        return RecursiveCharacterTextSplitter(
            chunk_size=self.settings.SEGMENT_CHUNK_SIZE if chunk_size is None else chunk_size,
            chunk_overlap=(
                self.settings.SEGMENT_CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
            ),
            length_function=len,
            separators=SEPARATORS,
        )

    def segment_text(
        self,
        text: str,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        content_type: ContentType = ContentType.TEXT
    ) -> List[Segment]:
        """
        Split plain text into segments with the separator cascade.

        Offsets are cumulative over the emitted pieces, so with a non-zero
        overlap they describe segment order rather than exact source positions.
        """
        pieces = self._splitter(chunk_size, chunk_overlap).split_text(text)

        segments = []
        offset = 0
        for number, content in enumerate(pieces, start=1):
            segments.append(Segment(
                id=f"text-segment-{number}",
                content=content,
                content_type=content_type,
                start_index=offset,
                end_index=offset + len(content),
                metadata=self._metadata(content, page_number=number),
            ))
            offset += len(content)

        logger.debug("Segmented text", segments=len(segments), characters=len(text))
        return segments

    def segment_file(
        self,
        extracted_text: str,
        file_type: str,
        original_page_count: Optional[int] = None
    ) -> List[Segment]:
        """
        Segment text extracted from an uploaded file.

        PDFs with a known page count are cut into equal-length slices, one per
        original page. Anything else goes through text segmentation.
        """
        if file_type != PDF_MIME_TYPE or not original_page_count:
            return self.segment_text(extracted_text, content_type=ContentType.FILE)

        page_length = math.ceil(len(extracted_text) / original_page_count)
        segments = []
        if page_length == 0:
            return segments

        for index in range(original_page_count):
            start = index * page_length
            end = min(start + page_length, len(extracted_text))
            content = extracted_text[start:end].strip()
            if not content:
                continue

            page_number = index + 1
            segments.append(Segment(
                id=f"pdf-page-{page_number}",
                content=content,
                content_type=ContentType.FILE,
                start_index=start,
                end_index=end,
                metadata=self._metadata(
                    content,
                    page_number=page_number,
                    section=f"PDF page {page_number}",
                ),
            ))

        logger.debug(
            "Segmented PDF text",
            pages=original_page_count,
            segments=len(segments)
        )
        return segments

    def segment_mixed(
        self,
        text: str,
        file_text: str,
        file_type: str,
        original_page_count: Optional[int] = None,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None
    ) -> List[Segment]:
        """Interleave text and file segments one-for-one, text first"""
        text_segments = self.segment_text(text, chunk_size, chunk_overlap)
        file_segments = self.segment_file(file_text, file_type, original_page_count)

        merged = []
        page_number = 1
        for position in range(max(len(text_segments), len(file_segments))):
            for kind, source in (("text", text_segments), ("file", file_segments)):
                if position >= len(source):
                    continue
                segment = source[position]
                merged.append(segment.model_copy(update={
                    "id": f"mixed-{kind}-{page_number}",
                    "content_type": ContentType.MIXED,
                    "metadata": segment.metadata.model_copy(update={"page_number": page_number}),
                }))
                page_number += 1

        return merged

    def validate_segments(self, segments: List[Segment]) -> bool:
        """Check the post-conditions every segment set must meet before chunking"""
        for segment in segments:
            if not segment.content.strip():
                return False
            if segment.start_index < 0 or segment.end_index <= segment.start_index:
                return False
            if segment.metadata.word_count is None or segment.metadata.estimated_read_time is None:
                return False
        return True

    def _metadata(
        self,
        content: str,
        page_number: int,
        section: Optional[str] = None
    ) -> SegmentMetadata:
        words = word_count(content)
        return SegmentMetadata(
            page_number=page_number,
            section=section or extract_section_title(content),
            estimated_read_time=math.ceil(words / self.settings.WORDS_PER_MINUTE),
            word_count=words,
            difficulty=assess_difficulty(content),
        )


def extract_section_title(content: str) -> str:
    """Use the first line as a title when it looks like one"""
    lines = content.split("\n")
    first_line = lines[0].strip() if lines else ""

    if first_line and len(first_line) < MAX_SECTION_TITLE_LENGTH:
        if (
            _NUMBERED_TITLE_RE.match(first_line)
            or _HANGUL_LABEL_TITLE_RE.match(first_line)
            or _MARKDOWN_TITLE_RE.match(first_line)
            or first_line.endswith(":")
        ):
            return first_line

    return f"Content {int(time.time() * 1000)}"


def assess_difficulty(content: str) -> Difficulty:
    words_per_sentence = word_count(content) / sentence_count(content)
    han_ratio = han_char_ratio(content)

    if words_per_sentence > 15 or han_ratio > 0.3:
        return Difficulty.HARD
    if words_per_sentence > 10 or han_ratio > 0.1:
        return Difficulty.MEDIUM
    return Difficulty.EASY
