from __future__ import annotations

import logging
from functools import lru_cache
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from derbyvote_core import (
    ConflictDetector,
    DataStore,
    OverrideManager,
    PushCoordinator,
    RemoteSync,
    ResultsEngine,
    Settings,
    SyncClient,
)
from derbyvote_core.errors import (
    ConflictError,
    DerbyVoteError,
    NotFoundError,
    RemoteError,
    ValidationError,
)

app = FastAPI(title="DerbyVote Results API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger = logging.getLogger(__name__)


class CarTallyModel(BaseModel):
    car_id: int = Field(alias="carId")
    car_number: str = Field(alias="carNumber")
    car_name: str = Field(alias="carName")
    racer_name: str = Field(alias="racerName")
    photo_url: str = Field(default="", alias="photoUrl")
    racer_id: Optional[int] = Field(default=None, alias="racerId")
    vote_count: int = Field(alias="voteCount")
    rank: Optional[int] = None

    model_config = ConfigDict(populate_by_name=True)


class CategoryResultModel(BaseModel):
    category_id: int = Field(alias="categoryId")
    category_name: str = Field(alias="categoryName")
    display_order: int = Field(alias="displayOrder")
    group_id: Optional[int] = Field(default=None, alias="groupId")
    group_name: str = Field(default="", alias="groupName")
    total_votes: int = Field(alias="totalVotes")
    votes: List[CarTallyModel]
    winner: Optional[CarTallyModel] = None
    has_override: bool = Field(alias="hasOverride")
    override_car_id: Optional[int] = Field(default=None, alias="overrideCarId")
    override_reason: Optional[str] = Field(default=None, alias="overrideReason")
    overridden_at: Optional[str] = Field(default=None, alias="overriddenAt")

    model_config = ConfigDict(populate_by_name=True)


class ResultsResponse(BaseModel):
    categories: List[CategoryResultModel]


class StatsResponse(BaseModel):
    total_votes: int = Field(alias="totalVotes")
    voters_who_voted: int = Field(alias="votersWhoVoted")
    total_categories: int = Field(alias="totalCategories")
    total_cars: int = Field(alias="totalCars")
    voting_open: bool = Field(alias="votingOpen")

    model_config = ConfigDict(populate_by_name=True)


class FinalWinnerModel(BaseModel):
    category_id: int = Field(alias="categoryId")
    category_name: str = Field(alias="categoryName")
    winner: CarTallyModel
    is_override: bool = Field(alias="isOverride")
    override_reason: Optional[str] = Field(default=None, alias="overrideReason")

    model_config = ConfigDict(populate_by_name=True)


class WinnersResponse(BaseModel):
    winners: List[FinalWinnerModel]


class TieConflictModel(BaseModel):
    category_id: int = Field(alias="categoryId")
    category_name: str = Field(alias="categoryName")
    tied_cars: List[CarTallyModel] = Field(alias="tiedCars")

    model_config = ConfigDict(populate_by_name=True)


class TiesResponse(BaseModel):
    ties: List[TieConflictModel]


class MultiWinConflictModel(BaseModel):
    car_id: int = Field(alias="carId")
    car_number: str = Field(alias="carNumber")
    car_name: str = Field(default="", alias="carName")
    racer_name: str = Field(alias="racerName")
    awards_won: List[str] = Field(alias="awardsWon")
    category_ids: List[int] = Field(alias="categoryIds")
    group_id: int = Field(alias="groupId")
    group_name: str = Field(alias="groupName")
    max_wins_per_car: int = Field(alias="maxWinsPerCar")

    model_config = ConfigDict(populate_by_name=True)


class MultipleWinsResponse(BaseModel):
    conflicts: List[MultiWinConflictModel]


class OverridePayload(BaseModel):
    car_id: int = Field(alias="carId")
    reason: str = Field(min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class CategoryOverrideResponse(BaseModel):
    category_id: int = Field(alias="categoryId")
    override_winner_car_id: Optional[int] = Field(default=None, alias="overrideWinnerCarId")
    override_reason: Optional[str] = Field(default=None, alias="overrideReason")
    overridden_at: Optional[str] = Field(default=None, alias="overriddenAt")

    model_config = ConfigDict(populate_by_name=True)


class PushRequest(BaseModel):
    derbynet_url: Optional[str] = Field(default=None, alias="derbynetUrl")

    model_config = ConfigDict(populate_by_name=True)


class PushDetailModel(BaseModel):
    category_id: int = Field(alias="categoryId")
    category_name: str = Field(alias="categoryName")
    status: str
    award_id: Optional[int] = Field(default=None, alias="awardId")
    racer_id: Optional[int] = Field(default=None, alias="racerId")
    message: str = ""

    model_config = ConfigDict(populate_by_name=True)


class PushResponse(BaseModel):
    winners_pushed: int = Field(alias="winnersPushed")
    awards_created: int = Field(alias="awardsCreated")
    skipped: int
    details: List[PushDetailModel] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class SyncRequest(BaseModel):
    derbynet_url: str = Field(alias="derbynetUrl", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class CarSyncResponse(BaseModel):
    total_racers: int = Field(alias="totalRacers")
    cars_created: int = Field(alias="carsCreated")
    cars_updated: int = Field(alias="carsUpdated")
    errors: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class CategorySyncResponse(BaseModel):
    total_awards: int = Field(alias="totalAwards")
    categories_created: int = Field(alias="categoriesCreated")
    categories_updated: int = Field(alias="categoriesUpdated")
    awards_created: int = Field(alias="awardsCreated")
    auth_error: str = Field(default="", alias="authError")
    errors: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


@lru_cache(maxsize=1)
def settings() -> Settings:
    return Settings.from_env()


@lru_cache(maxsize=1)
def store() -> DataStore:
    return DataStore(data_dir=settings().data_dir)


@lru_cache(maxsize=1)
def derbynet_client() -> SyncClient:
    config = settings()
    return SyncClient(
        base_url=config.derbynet_url,
        role=config.derbynet_role,
        password=config.derbynet_password,
        timeout=config.timeout,
    )


def _status_for(exc: DerbyVoteError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ConflictError):
        return 409
    if isinstance(exc, RemoteError):
        return 502
    return 500


@app.exception_handler(DerbyVoteError)
async def derbyvote_error_handler(request: Request, exc: DerbyVoteError) -> JSONResponse:
    status = _status_for(exc)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    content: dict = {"detail": str(exc)}
    if isinstance(exc, ConflictError):
        content["ties"] = [TieConflictModel(**tie.to_dict()).model_dump(by_alias=True) for tie in exc.ties]
        content["multipleWins"] = [
            MultiWinConflictModel(**conflict.to_dict()).model_dump(by_alias=True) for conflict in exc.multiple_wins
        ]
    if exc.summary is not None:
        content["summary"] = PushResponse(**exc.summary.to_dict()).model_dump(by_alias=True)
    return JSONResponse(status_code=status, content=content)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/results", response_model=ResultsResponse)
def results():
    categories = ResultsEngine(store()).get_results()
    return ResultsResponse(categories=[CategoryResultModel(**item.to_dict()) for item in categories])


@app.get("/results/{category_id}", response_model=CategoryResultModel)
def category_results(category_id: int):
    return CategoryResultModel(**ResultsEngine(store()).get_category_results(category_id).to_dict())


@app.get("/stats", response_model=StatsResponse)
def stats():
    return StatsResponse(**ResultsEngine(store()).get_stats())


@app.get("/winners", response_model=WinnersResponse)
def winners():
    final = ResultsEngine(store()).get_final_winners()
    return WinnersResponse(winners=[FinalWinnerModel(**item.to_dict()) for item in final])


@app.get("/conflicts/ties", response_model=TiesResponse)
def ties():
    found = ConflictDetector(store()).detect_ties()
    return TiesResponse(ties=[TieConflictModel(**tie.to_dict()) for tie in found])


@app.get("/conflicts/multiple-wins", response_model=MultipleWinsResponse)
def multiple_wins():
    found = ConflictDetector(store()).detect_multiple_wins()
    return MultipleWinsResponse(conflicts=[MultiWinConflictModel(**item.to_dict()) for item in found])


@app.put("/categories/{category_id}/override", response_model=CategoryOverrideResponse)
def set_override(category_id: int, payload: OverridePayload):
    category = OverrideManager(store()).set_manual_winner(category_id, payload.car_id, payload.reason)
    return CategoryOverrideResponse(
        category_id=category.id,
        override_winner_car_id=category.override_winner_car_id,
        override_reason=category.override_reason,
        overridden_at=category.overridden_at,
    )


@app.delete("/categories/{category_id}/override", response_model=CategoryOverrideResponse)
def clear_override(category_id: int):
    category = OverrideManager(store()).clear_manual_winner(category_id)
    return CategoryOverrideResponse(category_id=category.id)


@app.post("/results/push", response_model=PushResponse)
def push_results(payload: PushRequest):
    summary = PushCoordinator(store(), derbynet_client(), settings()).push_results(payload.derbynet_url)
    return PushResponse(**summary.to_dict())


@app.post("/sync/cars", response_model=CarSyncResponse)
def sync_cars(payload: SyncRequest):
    result = RemoteSync(store(), derbynet_client(), settings()).sync_cars(payload.derbynet_url)
    return CarSyncResponse(**result.to_dict())


@app.post("/sync/categories", response_model=CategorySyncResponse)
def sync_categories(payload: SyncRequest):
    result = RemoteSync(store(), derbynet_client(), settings()).sync_categories(payload.derbynet_url)
    return CategorySyncResponse(**result.to_dict())
