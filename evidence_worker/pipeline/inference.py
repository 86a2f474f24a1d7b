import base64
import os
import time
import logging
import threading
from dataclasses import dataclass
from typing import Dict, Any, List, Optional

from openai import OpenAI

from ..errors import InferenceBackendError, InferenceExhausted, JobCancelled

logger = logging.getLogger("evidence_worker")


@dataclass
class InferenceOutcome:
    """Text returned by the first backend that succeeded"""
    backend: str
    text: str
    attempts: int


def encode_image(image_path: str) -> str:
    """Encode a JPEG frame as a data URL"""
    with open(image_path, 'rb') as image_file:
        base64_image = base64.b64encode(image_file.read()).decode('utf-8')
    return f"data:image/jpeg;base64,{base64_image}"


def build_messages(prompt: str, image_paths: Optional[List[str]] = None) -> List[Dict[str, Any]]:
    """Chat message with the prompt text and, optionally, the frames as image parts"""
    content = [{"type": "text", "text": prompt}]

    for path in image_paths or []:
        if not os.path.exists(path):
            logger.warning(f"Frame missing, not attached: {path}")
            continue
        content.append({
            "type": "image_url",
            "image_url": {"url": encode_image(path)}
        })

    return [{"role": "user", "content": content}]


class InferenceBackend:
    """One model on an OpenAI-compatible endpoint"""

    def __init__(self, name: str, client: OpenAI, temperature: float = 0.2):
        self.name = name
        self.client = client
        self.temperature = temperature

    def generate(self, messages: List[Dict[str, Any]], timeout: Optional[float] = None) -> str:
        """
        Issue a single completion request.

        Raises:
            InferenceBackendError: on any client error or an empty response
        """
        client = self.client.with_options(timeout=timeout) if timeout else self.client
        try:
            response = client.chat.completions.create(
                model=self.name,
                messages=messages,
                temperature=self.temperature
            )
        except Exception as e:
            raise InferenceBackendError(self.name, str(e)) from e

        if not response.choices:
            raise InferenceBackendError(self.name, "response contained no choices")

        text = response.choices[0].message.content or ""
        if not text.strip():
            raise InferenceBackendError(self.name, "empty response")

        return text


class InferenceOrchestrator:
    """Tries backends in priority order until one returns text"""

    def __init__(self, backends: List[InferenceBackend], timeout: Optional[float] = None):
        if not backends:
            raise ValueError("At least one inference backend is required")
        self.backends = backends
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> 'InferenceOrchestrator':
        # each backend attempt is a single HTTP request
        client = OpenAI(api_key=config.OPENAI_API_KEY, base_url=config.OPENAI_BASE_URL, max_retries=0)
        backends = [
            InferenceBackend(name, client, temperature=config.INFERENCE_TEMPERATURE)
            for name in config.INFERENCE_BACKENDS
        ]
        return cls(backends, timeout=config.INFERENCE_TIMEOUT_SEC)

    def run(
        self,
        prompt: str,
        image_paths: Optional[List[str]] = None,
        job_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> InferenceOutcome:
        """
        Run the prompt against each backend once, in order.

        Args:
            prompt: prompt text
            image_paths: frames to attach (None for the text-only variant)
            job_id: used for logging only
            cancel_event: stops before the next attempt when set

        Returns:
            InferenceOutcome from the first backend that produced text

        Raises:
            InferenceExhausted: if every backend failed
        """
        messages = build_messages(prompt, image_paths)
        attached = len(messages[0]["content"]) - 1
        last_error = "no backend attempted"
        attempted = []

        for backend in self.backends:
            if cancel_event is not None and cancel_event.is_set():
                raise JobCancelled("inferring")

            attempted.append(backend.name)
            start_time = time.time()
            logger.info(f"INFER: Job {job_id} trying {backend.name} with {attached} frames")

            try:
                text = backend.generate(messages, timeout=self.timeout)
            except InferenceBackendError as e:
                last_error = str(e)
                logger.warning(f"Backend {backend.name} failed for job {job_id}: {last_error}")
                continue

            elapsed = time.time() - start_time
            logger.info(f"INFER: {backend.name} answered job {job_id} in {elapsed:.2f}s ({len(text)} chars)")
            return InferenceOutcome(backend=backend.name, text=text, attempts=len(attempted))

        logger.error(f"All backends failed for job {job_id}. Last error: {last_error}")
        raise InferenceExhausted(last_error, attempted)
