"""
Batch worker.

Queue integrations pull jobs from wherever they live and hand the image
sources here; this module stays framework agnostic and only sequences work
on the shared remover.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .images import ImageSource, encode_png
from .pipeline import OUTPUT_IMAGE, OUTPUT_MASK, BackgroundRemover, get_remover

logger = logging.getLogger(__name__)


@dataclass
class BatchItem:
    source: ImageSource
    output: str = OUTPUT_IMAGE


def process_batch(items: Iterable[BatchItem], remover: Optional[BackgroundRemover] = None) -> List[bytes]:
    """
    Process a batch of images synchronously, one after another.

    Returns PNG byte buffers matching the input order. The first failing item
    aborts the whole batch and its error propagates; nothing is returned for
    the items that already succeeded.
    """
    items = list(items)
    for index, item in enumerate(items):
        if item.output not in {OUTPUT_IMAGE, OUTPUT_MASK}:
            raise ValueError(f"Batch item {index}: output must be one of image | mask")

    remover = remover or get_remover()
    results = remover.remove_background_batch(item.source for item in items)

    outputs: List[bytes] = []
    for item, result in zip(items, results):
        outputs.append(encode_png(result.image if item.output == OUTPUT_IMAGE else result.mask))
    logger.info("Processed batch of %d images", len(outputs))
    return outputs
