"""
Photo intake: classify a batch, then store and attach each accepted photo.

Batch rules:
  * every photo is classified before anything is stored; one non-clothing photo
    rejects the whole batch and nothing from it is persisted
  * tag photos take the tag slot while it is empty, everything else is appended
  * a failed upload affects only that photo
  * if the draft disappears mid-batch the remaining photos are dropped
  * a photo whose inbound ref is already on the draft is skipped, whatever URL
    storage gave it the first time
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional

from draft_state import Draft
from services.draft_repository import DraftRepository
from services.photo_classifier import PhotoAnalysis, PhotoClassifier
from services.photo_storage import PhotoStorage
from utils.error_handling import PhotoError
from utils.logging_config import logger


@dataclass
class IntakeResult:
    draft: Optional[Draft]
    accepted: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)
    failed: List[PhotoError] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    tag_received: bool = False
    feedback: Optional[str] = None
    draft_missing: bool = False

    @property
    def batch_rejected(self) -> bool:
        return bool(self.rejected)


class PhotoIntakePipeline:
    def __init__(self, repository: DraftRepository, classifier: PhotoClassifier, storage: PhotoStorage):
        self.repository = repository
        self.classifier = classifier
        self.storage = storage

    async def _classify(self, photo_ref: str) -> PhotoAnalysis:
        try:
            return await self.classifier.analyze(photo_ref)
        except Exception as e:
            # a classifier outage shouldn't block listing; accept as an untagged item photo
            logger.warning(f"⚠️ Photo classification failed, accepting photo: {e}")
            return PhotoAnalysis(is_clothing=True, has_tag=False)

    async def ingest(self, photo_refs: List[str], draft: Draft) -> IntakeResult:
        result = IntakeResult(draft=draft)
        refs = [ref for ref in photo_refs if ref]
        if not refs:
            return result

        analyses = await asyncio.gather(*(self._classify(ref) for ref in refs))
        rejected = [ref for ref, analysis in zip(refs, analyses) if not analysis.is_clothing]
        if rejected:
            logger.info(f"🚫 Photo batch rejected for draft {draft.id}: {len(rejected)} not clothing")
            result.rejected = rejected
            return result

        descriptions = [a.description for a in analyses if a.description]
        result.feedback = descriptions[0] if descriptions else None

        for index, (ref, analysis) in enumerate(zip(refs, analyses)):
            current = await self.repository.get(draft.id)
            if current is None:
                logger.info(f"ℹ️ Draft {draft.id} gone mid-batch; dropping {len(refs) - index} photo(s)")
                result.draft = None
                result.draft_missing = True
                break
            result.draft = current
            if current.has_photo(ref):
                result.skipped.append(ref)
                continue

            try:
                url = await self.storage.store(ref, draft.id)
            except PhotoError as e:
                logger.warning(f"⚠️ Photo {index + 1}/{len(refs)} failed for draft {draft.id}: {e}")
                result.failed.append(e)
                continue

            updated = await self.repository.add_photo(draft.id, url, is_tag=analysis.has_tag, source_ref=ref)
            if updated is None:
                result.draft = None
                result.draft_missing = True
                break
            if analysis.has_tag and updated.tag_photo == url:
                result.tag_received = True
            result.draft = updated
            result.accepted.append(url)

        logger.info(
            f"📥 Intake for draft {draft.id}: accepted={len(result.accepted)} "
            f"failed={len(result.failed)} skipped={len(result.skipped)}"
        )
        return result
