import json
import logging

from fastapi import APIRouter, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from minirel.base import ModelBase
from minirel.exceptions import RelationError
from minirel.utils import underscore

logger = logging.getLogger("minirel.remoting")

# operations that take a ``where`` query parameter before any body
WHERE_OPERATIONS = ("count", "destroy_all", "update_all")


class CountResult(BaseModel):
    count: int


class RelationInfo(BaseModel):
    name: str
    type: str
    model_from: str
    key_from: str | None = None
    model_to: str
    key_to: str | None = None
    multiple: bool
    model_through: str | None = None
    key_through: str | None = None
    polymorphic: dict | None = None


def _serialize(value):
    if isinstance(value, ModelBase):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_serialize(item) for item in value]
    return value


def _json_param(request, name):
    raw = request.query_params.get(name)
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Query parameter {name} is not valid JSON")


async def _json_body(request):
    body = await request.body()
    if not body:
        return None
    try:
        return await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body is not valid JSON")


def _coerce_fk(definition, fk):
    model_to = definition.model_to
    if model_to is None:
        return fk
    return model_to._mapper.coerce_id(fk)


def _make_endpoint(model, shared):
    mapper = model._mapper

    async def endpoint(request: Request):
        path_params = request.path_params
        inst = await model.find_by_id(mapper.coerce_id(path_params["id"]))
        if inst is None:
            raise HTTPException(status_code=404, detail=f"{model.model_name} {path_params['id']} not found")

        definition = mapper.relations[shared.relation]
        args = []
        kwargs = {}
        if "fk" in path_params:
            args.append(_coerce_fk(definition, path_params["fk"]))
        if shared.operation in WHERE_OPERATIONS:
            args.append(_json_param(request, "where"))
        if shared.operation == "load":
            filter = _json_param(request, "filter")
            if filter is not None:
                kwargs["filter"] = filter

        body = await _json_body(request)
        if body is not None:
            args.append(body)
        elif shared.operation == "update_all":
            args.append({})

        logger.debug(f"{shared.verb.upper()} {request.url.path} -> {model.model_name}.{shared.alias}")
        try:
            result = await getattr(inst, shared.alias)(*args, **kwargs)
        except RelationError as err:
            if shared.operation == "exists":
                return Response(status_code=err.status_code)
            raise HTTPException(
                status_code=err.status_code,
                detail={"message": err.message, "details": err.details},
            )

        if shared.operation == "exists":
            return Response(status_code=200 if result else 404)
        if shared.operation == "count":
            return CountResult(count=result)
        return _serialize(result)

    endpoint.__name__ = shared.alias.strip("_")
    return endpoint


def build_router(model):
    """APIRouter exposing every shared relation method of ``model``."""
    mapper = model._mapper
    router = APIRouter(prefix=f"/api/{underscore(mapper.plural_model_name)}")

    @router.get("/relations", response_model=list[RelationInfo])
    def list_relations():
        return [RelationInfo(**definition.to_dict()) for definition in mapper.relations.values()]

    # literal segments first so that /count is not captured by /{fk}
    shared_methods = sorted(mapper.shared_methods.values(), key=lambda shared: "{fk}" in shared.path)
    for shared in shared_methods:
        router.add_api_route(
            shared.path,
            _make_endpoint(model, shared),
            methods=[shared.verb.upper()],
            name=f"{mapper.model_name}.{shared.alias}",
        )
    logger.debug(f"Built {len(shared_methods)} relation routes for {mapper.model_name}")
    return router


def create_app(data_source):
    app = FastAPI()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.data_source = data_source
    for model in data_source.models.values():
        app.include_router(build_router(model))
    logger.info(f"Mounted relation routes for {len(data_source.models)} model(s)")
    return app
