"""Read/write actions against the BrainSAIT document store.

Every store call goes through the shared ``ResilientExecutor``; the action
layer only validates required parameters and shapes results.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from time import time
from typing import Any, TypeVar
from uuid import uuid4

from edge_gateway.core.errors import GatewayError, validation_error
from edge_gateway.executor.resilient import ResilientExecutor
from edge_gateway.upstream.document_store import DocumentStoreClient

T = TypeVar("T")

HOSPITALS = "hospitals"
PATIENTS = "patients"
AI_MODELS = "ai_models"
VISION2030 = "vision2030_metrics"


def _require(body: dict[str, Any], *names: str) -> None:
    missing = [name for name in names if not body.get(name)]
    if not missing:
        return
    verb = "is" if len(missing) == 1 else "are"
    raise validation_error(f"{' and '.join(missing)} {verb} required", 400)


def _filter(body: dict[str, Any]) -> dict[str, Any]:
    value = body.get("filter")
    return value if isinstance(value, dict) else {}


class _Call:
    """Binds the executor to one request's trace id and cancel event."""

    def __init__(
        self,
        executor: ResilientExecutor,
        trace_id: str,
        cancel_event: asyncio.Event | None,
    ):
        self._executor = executor
        self._trace_id = trace_id
        self._cancel_event = cancel_event

    async def __call__(self, operation: Callable[[], Awaitable[T]]) -> T:
        result = await self._executor.run(
            operation, cancel_event=self._cancel_event, trace_id=self._trace_id
        )
        return result.value


ActionHandler = Callable[[dict[str, Any], _Call], Awaitable[dict[str, Any]]]


class DocumentStoreActions:
    def __init__(self, client: DocumentStoreClient, executor: ResilientExecutor):
        self._client = client
        self._executor = executor
        self._actions: dict[str, ActionHandler] = {
            "hospitals": self._hospitals,
            "hospital": self._hospital,
            "patients": self._patients,
            "patient": self._patient,
            "ai-models": self._ai_models,
            "vision2030": self._vision2030,
            "hospital-insights": self._hospital_insights,
            "create-patient": self._create_patient,
            "add-ai-prediction": self._add_ai_prediction,
        }

    def known_actions(self) -> list[str]:
        return sorted(self._actions)

    def is_known(self, action: str) -> bool:
        return action in self._actions

    async def dispatch(
        self,
        action: str,
        body: dict[str, Any],
        trace_id: str,
        cancel_event: asyncio.Event | None = None,
    ) -> dict[str, Any]:
        handler = self._actions.get(action)
        if handler is None:
            raise validation_error(f"Unknown action: {action}", 404)
        return await handler(body, _Call(self._executor, trace_id, cancel_event))

    async def _find(
        self, call: _Call, collection: str, filter_: dict[str, Any]
    ) -> list[dict[str, Any]]:
        return await call(lambda: self._client.find(collection, filter_))

    async def _hospitals(self, body: dict[str, Any], call: _Call) -> dict[str, Any]:
        return {"hospitals": await self._find(call, HOSPITALS, _filter(body))}

    async def _hospital_by_id(self, call: _Call, hospital_id: str) -> dict[str, Any] | None:
        hospitals = await self._find(call, HOSPITALS, {"hospital_id": hospital_id})
        return hospitals[0] if hospitals else None

    async def _hospital(self, body: dict[str, Any], call: _Call) -> dict[str, Any]:
        _require(body, "hospital_id")
        return {"hospital": await self._hospital_by_id(call, str(body["hospital_id"]))}

    async def _patients_for(self, call: _Call, hospital_id: object) -> list[dict[str, Any]]:
        filter_ = {"hospital_id": hospital_id} if hospital_id else {}
        return await self._find(call, PATIENTS, filter_)

    async def _patients(self, body: dict[str, Any], call: _Call) -> dict[str, Any]:
        return {"patients": await self._patients_for(call, body.get("hospital_id"))}

    async def _patient(self, body: dict[str, Any], call: _Call) -> dict[str, Any]:
        _require(body, "patient_id")
        patients = await self._find(call, PATIENTS, {"patient_id": body["patient_id"]})
        return {"patient": patients[0] if patients else None}

    async def _ai_models(self, body: dict[str, Any], call: _Call) -> dict[str, Any]:
        return {"ai_models": await self._find(call, AI_MODELS, _filter(body))}

    async def _vision_metrics(self, call: _Call, hospital_id: object) -> list[dict[str, Any]]:
        filter_ = {"hospital_id": hospital_id} if hospital_id else {}
        return await self._find(call, VISION2030, filter_)

    async def _vision2030(self, body: dict[str, Any], call: _Call) -> dict[str, Any]:
        return {"vision2030_metrics": await self._vision_metrics(call, body.get("hospital_id"))}

    async def _hospital_insights(self, body: dict[str, Any], call: _Call) -> dict[str, Any]:
        _require(body, "hospital_id")
        hospital_id = str(body["hospital_id"])
        try:
            async with asyncio.TaskGroup() as group:
                hospital_task = group.create_task(self._hospital_by_id(call, hospital_id))
                patients_task = group.create_task(self._patients_for(call, hospital_id))
                models_task = group.create_task(
                    self._find(call, AI_MODELS, {"deployment_status": "production"})
                )
                metrics_task = group.create_task(self._vision_metrics(call, hospital_id))
        except* GatewayError as failures:
            # siblings are already cancelled; surface the first classified failure
            raise failures.exceptions[0]
        hospital = hospital_task.result() or {}
        patients = patients_task.result()
        models = models_task.result()
        metrics = metrics_task.result()
        specializations = hospital.get("specializations") or []
        score = metrics[0].get("overall_alignment_score") if metrics else 0
        return {
            "insights": {
                "hospital": hospital or None,
                "patients_count": len(patients),
                "ai_models_deployed": len(models),
                "vision2030_score": score or 0,
                "top_specializations": list(specializations)[:3],
                "digital_maturity": hospital.get("digital_maturity_level") or 0,
            }
        }

    async def _create_patient(self, body: dict[str, Any], call: _Call) -> dict[str, Any]:
        _require(body, "patient_data")
        patient_data = body["patient_data"]
        if not isinstance(patient_data, dict):
            raise validation_error("patient_data must be an object", 400)
        now = datetime.now(UTC).isoformat()
        patient_id = f"PAT-{int(time() * 1000)}-{uuid4().hex[:9]}"
        document = {
            **patient_data,
            "patient_id": patient_id,
            "created_at": now,
            "updated_at": now,
        }
        await call(lambda: self._client.insert_one(PATIENTS, document))
        return {"patient_id": patient_id, "created": True}

    async def _add_ai_prediction(self, body: dict[str, Any], call: _Call) -> dict[str, Any]:
        _require(body, "patient_id", "prediction")
        prediction = body["prediction"]
        if not isinstance(prediction, dict):
            raise validation_error("prediction must be an object", 400)
        entry = {**prediction, "timestamp": datetime.now(UTC).isoformat()}
        modified = await call(
            lambda: self._client.update_one(
                PATIENTS,
                {"patient_id": body["patient_id"]},
                {"$push": {"ai_predictions": entry}},
            )
        )
        return {"updated": modified > 0}

