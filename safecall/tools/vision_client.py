"""
Google Vision Client - Frame analysis via images:annotate

One request asks for safe-search, object localisation and labels; the
annotations are reduced to a VisualAssessment with keyword lists.
"""

import base64
import logging
from typing import Any, Iterable, Optional

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from safecall.config.settings import VisionConfig
from safecall.models.threat import VisualAssessment
from safecall.services.interfaces import VisionService

logger = logging.getLogger(__name__)


class VisionError(Exception):
    """Raised when the Vision API reports an error for the frame."""
    pass


WEAPON_KEYWORDS = (
    "weapon", "gun", "knife", "blade", "sword", "rifle", "pistol",
    "firearm", "ammunition", "bullet", "explosive", "bomb",
    "baseball bat", "hammer", "axe", "machete", "dagger",
)

DISTRESS_KEYWORDS = (
    "crying", "tears", "bruise", "injury", "blood", "bandage",
    "distress", "fear", "panic", "hiding", "emergency",
    "medical equipment", "ambulance", "police car",
)

LIKELY = ("LIKELY", "VERY_LIKELY")

FEATURES = [
    {"type": "SAFE_SEARCH_DETECTION"},
    {"type": "OBJECT_LOCALIZATION", "maxResults": 20},
    {"type": "LABEL_DETECTION", "maxResults": 20},
]


def _matches(items: Iterable[str], keywords: Iterable[str]) -> bool:
    lowered = [item.lower() for item in items]
    return any(keyword in item for item in lowered for keyword in keywords)


def reduce_annotations(annotation: dict[str, Any]) -> VisualAssessment:
    """Turn one annotate response into structured observations."""
    safe_search = annotation.get("safeSearchAnnotation")
    objects = [o.get("name", "") for o in annotation.get("localizedObjectAnnotations", []) if o.get("name")]
    labels = [l.get("description", "") for l in annotation.get("labelAnnotations", []) if l.get("description")]
    detected = objects + labels

    has_violence = bool(safe_search) and (
        safe_search.get("violence") in LIKELY or safe_search.get("racy") == "VERY_LIKELY"
    )

    confidence = 0.7
    if objects:
        confidence += 0.1
    if len(labels) > 5:
        confidence += 0.1
    if safe_search:
        confidence += 0.1

    return VisualAssessment(
        has_weapons=_matches(detected, WEAPON_KEYWORDS),
        has_violence=has_violence,
        has_distress=_matches(detected, DISTRESS_KEYWORDS),
        confidence=min(confidence, 1.0),
        detected_objects=tuple(detected),
    )


class GoogleVisionClient(VisionService):
    """VisionService backed by the Cloud Vision REST API."""

    def __init__(
        self,
        settings: Optional[VisionConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings or VisionConfig()
        self._client = client or httpx.AsyncClient(
            base_url=self._settings.base_url,
            timeout=self._settings.timeout_seconds,
            transport=httpx.AsyncHTTPTransport(retries=0),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _annotate(self, frame: bytes) -> dict[str, Any]:
        response = await self._client.post(
            "/v1/images:annotate",
            params={"key": self._settings.api_key or ""},
            json={"requests": [{
                "image": {"content": base64.b64encode(frame).decode("ascii")},
                "features": FEATURES,
            }]},
        )
        response.raise_for_status()
        responses = response.json().get("responses") or [{}]
        annotation = responses[0]
        if "error" in annotation:
            raise VisionError(annotation["error"].get("message", "annotate failed"))
        return annotation

    async def analyze_video_frame(self, frame: bytes) -> VisualAssessment:
        annotation = await self._annotate(frame)
        visual = reduce_annotations(annotation)
        logger.debug(
            f"[GoogleVisionClient] weapons={visual.has_weapons} violence={visual.has_violence} "
            f"distress={visual.has_distress} objects={len(visual.detected_objects)}"
        )
        return visual
