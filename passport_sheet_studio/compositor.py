from __future__ import annotations

import base64
import binascii
import io
import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, TypeVar

import requests
from PIL import Image

from .config import CompositorConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

Schedule = Callable[[float, Callable[[], None]], Any]

DATA_URI_RE = re.compile(r"^data:image/(png|jpeg|jpg|webp);base64,", re.IGNORECASE)
ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


class BackgroundColor(str, Enum):
    WHITE = "white"
    BLUE = "blue"
    UNCHANGED = "unchanged"

    @property
    def hex(self) -> Optional[str]:
        return {"white": "#FFFFFF", "blue": "#2296F3"}.get(self.value)


class ClothingOption(str, Enum):
    NONE = "none"
    MALE_BLAZER = "male_blazer"
    FEMALE_BLAZER = "female_blazer"
    MALE_SHIRT = "male_shirt"
    FEMALE_SHIRT = "female_shirt"


OUTFITS = {
    ClothingOption.MALE_BLAZER: "a professional black suit jacket with a white dress shirt and tie",
    ClothingOption.FEMALE_BLAZER: "a professional black formal blazer over a simple top",
    ClothingOption.MALE_SHIRT: "a crisp white formal button-down dress shirt",
    ClothingOption.FEMALE_SHIRT: "a professional white formal business shirt",
}


class CompositorError(RuntimeError):
    pass


class RateLimitError(CompositorError):
    pass


def needs_compositing(background: BackgroundColor, clothing: ClothingOption) -> bool:
    return background is not BackgroundColor.UNCHANGED or clothing is not ClothingOption.NONE


def build_prompt(background: BackgroundColor, clothing: ClothingOption) -> str:
    lines = [
        "Task: Create a professional passport photo.",
        "",
        "INSTRUCTIONS:",
        "1. KEEP THE PERSON'S FACE, HAIR, AND IDENTITY EXACTLY AS IS.",
    ]
    if background is BackgroundColor.UNCHANGED:
        lines.append("2. BACKGROUND: Keep the original background exactly as it is.")
    else:
        name = "pure white" if background is BackgroundColor.WHITE else "saturated blue"
        lines.append(
            f"2. BACKGROUND: Replace the background with a SOLID, UNIFORM {name} background. "
            f"Use the color {background.hex}."
        )
    if clothing is ClothingOption.NONE:
        lines.append("3. CLOTHING: Keep original clothes exactly as they are.")
    else:
        lines.append(
            f"3. CLOTHING: Replace current clothes with {OUTFITS[clothing]}. "
            "Ensure a realistic fit and natural neck transition."
        )
    lines.extend(
        [
            "4. Ensure clean, sharp edges between the person and the background.",
            "",
            "STRICT PROHIBITION:",
            "- DO NOT include any text, labels, hex codes, or watermarks on the image.",
        ]
    )
    if background.hex:
        lines.append(f'- DO NOT write "{background.hex}" or any numbers on the result.')
    lines.append("- THE OUTPUT MUST BE A CLEAN PHOTOGRAPH ONLY.")
    return "\n".join(lines)


def encode_data_uri(image: Image.Image) -> str:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


def strip_data_uri(data: str) -> str:
    return DATA_URI_RE.sub("", data, count=1)


def decode_image(data: str) -> Image.Image:
    try:
        raw = base64.b64decode(strip_data_uri(data), validate=True)
        image = Image.open(io.BytesIO(raw))
        image.load()
    except (binascii.Error, ValueError, OSError) as exc:
        raise CompositorError(f"The AI returned an unreadable image: {exc}") from exc
    return image


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    initial_delay: float = 2.0

    def delay(self, attempt: int) -> float:
        return self.initial_delay * (2 ** attempt)

    def delays(self) -> List[float]:
        return [self.delay(attempt) for attempt in range(self.max_retries)]


def call_with_backoff(
    func: Callable[[], T],
    policy: RetryPolicy = RetryPolicy(),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``func``, retrying only on ``RateLimitError`` with exponential waits."""
    attempt = 0
    while True:
        try:
            return func()
        except RateLimitError as exc:
            if attempt >= policy.max_retries:
                raise CompositorError(
                    f"Rate limited after {policy.max_retries} retries: {exc}"
                ) from exc
            wait = policy.delay(attempt)
            logger.warning("AI compositor rate limited (attempt %d); retrying in %.1fs", attempt + 1, wait)
            sleep(wait)
            attempt += 1


def call_with_backoff_async(
    func: Callable[[], T],
    done: Callable[[Optional[T], Optional[BaseException]], None],
    schedule: Schedule,
    policy: RetryPolicy = RetryPolicy(),
) -> None:
    """Like ``call_with_backoff`` but never blocks between attempts.

    Each wait is handed to ``schedule(seconds, then)`` and the outcome is
    reported once through ``done(result, error)``.
    """

    def attempt(number: int) -> None:
        try:
            result = func()
        except RateLimitError as exc:
            if number >= policy.max_retries:
                error = CompositorError(f"Rate limited after {policy.max_retries} retries: {exc}")
                error.__cause__ = exc
                done(None, error)
                return
            wait = policy.delay(number)
            logger.warning("AI compositor rate limited (attempt %d); retrying in %.1fs", number + 1, wait)
            schedule(wait, lambda: attempt(number + 1))
            return
        except Exception as exc:
            done(None, exc)
            return
        done(result, None)

    attempt(0)


class GeminiCompositor:
    """Replaces background and clothing through the Gemini image model."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash-image",
        timeout: float = 120.0,
        retry: RetryPolicy = RetryPolicy(),
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not api_key:
            raise ValueError("An API key is required for the AI compositor.")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.retry = retry
        self.session = session or requests.Session()
        self.sleep = sleep

    @classmethod
    def from_config(cls, config: CompositorConfig, **kwargs) -> "GeminiCompositor":
        return cls(
            api_key=config.api_key or "",
            model=config.model,
            timeout=config.timeout,
            retry=RetryPolicy(max_retries=config.max_retries, initial_delay=config.initial_delay),
            **kwargs,
        )

    def composite(self, image: Image.Image, background: BackgroundColor, clothing: ClothingOption) -> Image.Image:
        payload = self._payload(image, background, clothing)
        response = call_with_backoff(lambda: self._post(payload), self.retry, self.sleep)
        return decode_image(self._extract_image(response))

    def composite_async(
        self,
        image: Image.Image,
        background: BackgroundColor,
        clothing: ClothingOption,
        schedule: Schedule,
        done: Callable[[Optional[Image.Image], Optional[BaseException]], None],
    ) -> None:
        """Composite without sleeping; rate-limit waits go through ``schedule``."""
        payload = self._payload(image, background, clothing)

        def received(response: Optional[dict], error: Optional[BaseException]) -> None:
            if error is not None:
                done(None, error)
                return
            try:
                result = decode_image(self._extract_image(response or {}))
            except CompositorError as exc:
                done(None, exc)
                return
            done(result, None)

        call_with_backoff_async(lambda: self._post(payload), received, schedule, self.retry)

    @staticmethod
    def _payload(image: Image.Image, background: BackgroundColor, clothing: ClothingOption) -> dict:
        return {
            "contents": [
                {
                    "parts": [
                        {"inlineData": {"mimeType": "image/png", "data": strip_data_uri(encode_data_uri(image))}},
                        {"text": build_prompt(background, clothing)},
                    ]
                }
            ]
        }

    def _post(self, payload: dict) -> dict:
        url = ENDPOINT.format(model=self.model)
        try:
            response = self.session.post(
                url,
                json=payload,
                headers={"x-goog-api-key": self.api_key},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise CompositorError(f"AI request failed: {exc}") from exc
        if response.status_code == 429 or (response.status_code >= 400 and "RESOURCE_EXHAUSTED" in response.text):
            raise RateLimitError(f"429 Too Many Requests: {response.text[:200]}")
        if response.status_code >= 400:
            raise CompositorError(f"AI request failed with HTTP {response.status_code}: {response.text[:200]}")
        try:
            return response.json()
        except ValueError as exc:
            raise CompositorError("The AI returned a malformed response.") from exc

    @staticmethod
    def _extract_image(response: dict) -> str:
        for candidate in (response.get("candidates") or [])[:1]:
            parts = (candidate.get("content") or {}).get("parts") or []
            for part in parts:
                inline = part.get("inlineData") or part.get("inline_data") or {}
                if inline.get("data"):
                    return inline["data"]
        raise CompositorError("The AI returned a response but no image was found.")
