"""Batch orchestrator.

Turns one generation request into one or more remote predictions and
returns the output images in request order.

Steps:
1. Upload reference images once for the whole batch
2. Create a single prediction (native count) or N throttled predictions
3. Await every prediction concurrently, each tagged with its index
4. Download outputs and flatten them by ascending index
"""

import asyncio
import logging
from typing import Callable, List, Optional, Tuple

from imageforge.models.catalog import ModelCatalog, ModelSpec, build_input
from imageforge.models.options import GenerationRequest
from imageforge.predictions.base import PredictionClient
from imageforge.predictions.models import Prediction

logger = logging.getLogger(__name__)

# Called as soon as a prediction exists, before it completes.
CreatedCallback = Callable[[Prediction], None]


class BatchOrchestrator:
    """Fans a request out over a PredictionClient."""

    def __init__(
        self,
        client: PredictionClient,
        catalog: Optional[ModelCatalog] = None,
        throttle_seconds: float = 5.0,
    ):
        self.client = client
        self.catalog = catalog or ModelCatalog()
        self.throttle_seconds = throttle_seconds

    async def run(
        self,
        request: GenerationRequest,
        on_created: Optional[CreatedCallback] = None,
    ) -> List[bytes]:
        """Generate every image the request asks for.

        Returns raw output bytes ordered by request index. The first failing
        prediction's error propagates; its siblings are aborted.
        """
        spec = self.catalog.get(request.model_id)
        count = max(1, request.image_count)
        payload = await self.client.upload_inputs(build_input(spec, request, count))

        if spec.supports_native_count or count == 1:
            prediction = await self.client.create_prediction(spec.model_ref, payload)
            _notify(on_created, prediction)
            final = await self.client.await_completion(prediction)
            return await self.client.download_outputs(final)

        predictions = await self._create_throttled(spec, payload, count, on_created)
        return await self._gather_in_order(predictions)

    async def _create_throttled(
        self,
        spec: ModelSpec,
        payload: dict,
        count: int,
        on_created: Optional[CreatedCallback],
    ) -> List[Prediction]:
        single = {**payload, "number_of_images": 1}
        predictions = []
        for index in range(count):
            if index > 0 and self.throttle_seconds > 0:
                await asyncio.sleep(self.throttle_seconds)
            prediction = await self.client.create_prediction(spec.model_ref, single)
            logger.info(
                "Batch prediction %d/%d created for %s: %s",
                index + 1, count, spec.model_id, prediction.id,
            )
            _notify(on_created, prediction)
            predictions.append(prediction)
        return predictions

    async def _complete(self, index: int, prediction: Prediction) -> Tuple[int, List[bytes]]:
        final = await self.client.await_completion(prediction)
        return index, await self.client.download_outputs(final)

    async def _gather_in_order(self, predictions: List[Prediction]) -> List[bytes]:
        tasks = [
            asyncio.create_task(self._complete(index, prediction))
            for index, prediction in enumerate(predictions)
        ]
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        failed = [t for t in tasks if t in done and not t.cancelled() and t.exception()]
        if failed:
            for task in pending:
                task.cancel()
            for index, task in enumerate(tasks):
                if task in pending:
                    await self.client.cancel(predictions[index])
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(
                "Batch aborted after a prediction failed; %d sibling(s) cancelled",
                len(pending),
            )
            raise failed[0].exception()

        results = sorted((task.result() for task in tasks), key=lambda r: r[0])
        return [image for _, images in results for image in images]


def _notify(callback: Optional[CreatedCallback], prediction: Prediction) -> None:
    if callback is not None:
        callback(prediction)
