"""Test doubles for the remote prediction service."""

from __future__ import annotations

import asyncio
import json
from io import BytesIO
from typing import Callable, Dict, List, Optional, Tuple

import httpx
from PIL import Image

from imageforge.errors import GenerationFailed
from imageforge.predictions.base import PredictionClient
from imageforge.predictions.models import Prediction, PredictionStatus

API = "https://api.test/v1"


def png_bytes(size: Tuple[int, int] = (64, 48), color=(200, 40, 40), fmt: str = "PNG") -> bytes:
    buf = BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


def make_prediction(prediction_id: str, stream: bool = False) -> Prediction:
    urls = {
        "get": f"{API}/predictions/{prediction_id}",
        "cancel": f"{API}/predictions/{prediction_id}/cancel",
    }
    if stream:
        urls["stream"] = f"https://stream.test/v1/streams/{prediction_id}"
    return Prediction.model_validate({"id": prediction_id, "status": "starting", "urls": urls})


class FakePredictionClient(PredictionClient):
    """In-process client with scriptable completion timing and failures."""

    def __init__(
        self,
        delays: Optional[Dict[str, float]] = None,
        gate: Optional[asyncio.Event] = None,
        fail_ids: Tuple[str, ...] = (),
        render: Optional[Callable[[str], bytes]] = None,
    ):
        self.delays = delays or {}
        self.gate = gate
        self.fail_ids = set(fail_ids)
        self.render = render or (lambda address: address.encode())
        self.created: List[Tuple[str, dict]] = []
        self.uploaded: List[bytes] = []
        self.cancelled: List[str] = []
        self.completion_order: List[str] = []
        self.closed = False

    async def upload_inputs(self, payload):
        resolved = {}
        for key, value in payload.items():
            if isinstance(value, list):
                items = []
                for item in value:
                    if isinstance(item, bytes):
                        self.uploaded.append(item)
                        item = f"https://files.test/{len(self.uploaded)}"
                    items.append(item)
                value = items
            resolved[key] = value
        return resolved

    async def create_prediction(self, model_ref, payload):
        payload = await self.upload_inputs(payload)
        prediction = make_prediction(f"p{len(self.created)}")
        self.created.append((model_ref, payload))
        return prediction

    async def await_completion(self, prediction):
        await asyncio.sleep(self.delays.get(prediction.id, 0))
        if self.gate is not None:
            await self.gate.wait()
        if prediction.id in self.fail_ids:
            raise GenerationFailed(f"{prediction.id} exploded")
        self.completion_order.append(prediction.id)
        index = int(prediction.id[1:])
        count = self.created[index][1].get("number_of_images", 1)
        return prediction.model_copy(update={
            "status": PredictionStatus.SUCCEEDED,
            "output": [f"https://out.test/{prediction.id}-{k}" for k in range(count)],
        })

    async def download_outputs(self, prediction):
        return [self.render(address) for address in prediction.output]

    async def cancel(self, prediction):
        self.cancelled.append(prediction.urls.cancel)

    async def aclose(self):
        self.closed = True


class FakeService:
    """httpx.MockTransport handler speaking the prediction wire contract.

    statuses: per-poll status script for every prediction created; the last
    entry repeats once the script runs out.
    """

    def __init__(
        self,
        statuses: Optional[List[str]] = None,
        outputs: Optional[List[str]] = None,
        error: Optional[str] = None,
        stream_body: Optional[str] = None,
        create_status: int = 201,
        cancel_status: int = 200,
        image: Optional[bytes] = None,
    ):
        self.statuses = statuses or ["succeeded"]
        self.outputs = outputs if outputs is not None else ["https://delivery.test/out-0.png"]
        self.error = error
        self.stream_body = stream_body
        self.create_status = create_status
        self.cancel_status = cancel_status
        self.image = image or png_bytes()
        self.requests: List[httpx.Request] = []
        self.polls: Dict[str, int] = {}
        self.created_inputs: List[dict] = []
        self.cancelled: List[str] = []
        self.uploads = 0

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def _prediction_json(self, prediction_id: str, status: str) -> dict:
        body = {
            "id": prediction_id,
            "status": status,
            "urls": {
                "get": f"{API}/predictions/{prediction_id}",
                "cancel": f"{API}/predictions/{prediction_id}/cancel",
            },
            "output": None,
            "error": None,
        }
        if self.stream_body is not None:
            body["urls"]["stream"] = f"https://stream.test/v1/streams/{prediction_id}"
        if status == "succeeded":
            body["output"] = self.outputs[0] if len(self.outputs) == 1 else self.outputs
        if status in ("failed", "canceled"):
            body["error"] = self.error
        return body

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        host = request.url.host

        if host == "delivery.test":
            return httpx.Response(200, content=self.image)

        if host == "stream.test":
            return httpx.Response(
                200,
                content=self.stream_body.encode(),
                headers={"content-type": "text/event-stream"},
            )

        if request.method == "POST" and path == "/v1/files":
            self.uploads += 1
            return httpx.Response(201, json={"urls": {"get": f"{API}/files/f{self.uploads}"}})

        if request.method == "POST" and path.endswith("/predictions"):
            if self.create_status >= 300:
                return httpx.Response(self.create_status, text="rate limited")
            self.created_inputs.append(json.loads(request.content)["input"])
            prediction_id = f"pred{len(self.created_inputs)}"
            return httpx.Response(self.create_status, json=self._prediction_json(prediction_id, "starting"))

        if request.method == "POST" and path.endswith("/cancel"):
            self.cancelled.append(str(request.url))
            return httpx.Response(self.cancel_status, json={})

        if request.method == "GET" and path.startswith("/v1/predictions/"):
            prediction_id = path.rsplit("/", 1)[-1]
            count = self.polls.get(prediction_id, 0)
            self.polls[prediction_id] = count + 1
            status = self.statuses[min(count, len(self.statuses) - 1)]
            return httpx.Response(200, json=self._prediction_json(prediction_id, status))

        return httpx.Response(404, text=f"no route for {request.method} {path}")
