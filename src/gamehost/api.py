from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from gamehost.control.activation import ActivationGateway, gateway_from_env
from gamehost.errors import ActivationTimeout


class ActivationResponse(BaseModel):
    status: str
    instance_id: str
    start_issued: bool = False
    reason: str = ""


def create_app(gateway: ActivationGateway | None = None) -> FastAPI:
    app = FastAPI(title="gamehost activation API", version="0.1.0")
    gateway = gateway or gateway_from_env()

    def _activate(target: str) -> JSONResponse:
        try:
            result = gateway.activate(target)
        except ActivationTimeout as e:
            raise HTTPException(status_code=504, detail=str(e))
        body = ActivationResponse(**result.to_dict())
        return JSONResponse(status_code=result.http_status, content=body.model_dump())

    @app.post("/start")
    def start_server():
        return _activate(gateway.instance_id)

    @app.post("/instances/{instance_id}/start")
    def start_instance(instance_id: str):
        return _activate(instance_id)

    @app.get("/state")
    def get_state():
        if gateway.machine is None:
            raise HTTPException(status_code=404, detail="No state machine attached")
        return {"instance_id": gateway.instance_id, "state": gateway.machine.state.value}

    return app
