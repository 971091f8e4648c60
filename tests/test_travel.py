"""Tests for distances, drive times and the nearest legal campfire."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
import requests

from campfire_planner.errors import ProviderError, TransientProviderError
from campfire_planner.schemas import (
    AreaMembership,
    BanStatus,
    ClosureStatus,
    ForestRecord,
    Snapshot,
    UserLocation,
)
from campfire_planner.travel import (
    OsrmRouteService,
    RouteMetric,
    RouteTarget,
    apply_travel_metrics,
    find_nearest_legal_spot,
    haversine_km,
    is_legal_campfire_spot,
)

SYDNEY = UserLocation(latitude=-33.8688, longitude=151.2093)


def _forest(
    forest_id: str,
    lat: float | None,
    lon: float | None,
    ban: BanStatus = BanStatus.NOT_BANNED,
    **fields: object,
) -> ForestRecord:
    record: dict[str, object] = {
        "id": forest_id,
        "forest_name": forest_id.title(),
        "areas": [AreaMembership(area_name="Central Tablelands", ban_status=ban)],
        "ban_status": ban,
        "fire_danger_status": BanStatus.NOT_BANNED,
        "latitude": lat,
        "longitude": lon,
    }
    record.update(fields)
    return ForestRecord(**record)


def _snapshot(*forests: ForestRecord) -> Snapshot:
    return Snapshot(
        schema_version=3,
        fetched_at=datetime(2026, 1, 10, tzinfo=UTC),
        forests=list(forests),
        warnings=["existing warning"],
    )


def _response(payload: object, status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.ok = status < 400
    resp.status_code = status
    resp.json.return_value = payload
    return resp


class FakeRoutes:
    def __init__(
        self, metrics: dict[str, RouteMetric] | None = None, error: Exception | None = None
    ) -> None:
        self.metrics = metrics or {}
        self.error = error
        self.calls: list[list[RouteTarget]] = []

    async def driving_metrics(
        self, origin: UserLocation, targets: list[RouteTarget], avoid_tolls: bool = True
    ) -> dict[str, RouteMetric]:
        self.calls.append(targets)
        if self.error is not None:
            raise self.error
        return self.metrics


class TestHaversine:
    def test_same_point(self) -> None:
        assert haversine_km(-33.0, 151.0, -33.0, 151.0) == 0.0

    def test_sydney_to_canberra(self) -> None:
        distance = haversine_km(-33.8688, 151.2093, -35.2809, 149.1300)
        assert 245 < distance < 250


class TestLegalSpot:
    def test_legal(self) -> None:
        assert is_legal_campfire_spot(_forest("a", -33.0, 150.0))

    def test_solid_fuel_ban(self) -> None:
        assert not is_legal_campfire_spot(_forest("a", -33.0, 150.0, BanStatus.BANNED))

    def test_unknown_ban(self) -> None:
        assert not is_legal_campfire_spot(_forest("a", -33.0, 150.0, BanStatus.UNKNOWN))

    def test_total_fire_ban(self) -> None:
        forest = _forest("a", -33.0, 150.0, fire_danger_status=BanStatus.BANNED)
        assert not is_legal_campfire_spot(forest)

    def test_closed(self) -> None:
        forest = _forest("a", -33.0, 150.0, closure_status=ClosureStatus.CLOSED)
        assert not is_legal_campfire_spot(forest)

    def test_nearest_skips_banned_and_unmeasured(self) -> None:
        forests = [
            _forest("near", -33.0, 150.0, BanStatus.BANNED, distance_km=5.0),
            _forest("far", -33.0, 150.0, distance_km=40.0),
            _forest("mid", -33.0, 150.0, distance_km=20.0),
            _forest("nowhere", None, None),
        ]
        nearest = find_nearest_legal_spot(forests)
        assert nearest is not None
        assert nearest.id == "mid"
        assert nearest.area_name == "Central Tablelands"
        assert nearest.distance_km == 20.0

    def test_no_candidates(self) -> None:
        assert find_nearest_legal_spot([_forest("a", -33.0, 150.0, BanStatus.BANNED)]) is None


class TestApplyTravelMetrics:
    @pytest.mark.asyncio
    async def test_without_location_unchanged(self) -> None:
        snapshot = _snapshot(_forest("a", -33.0, 150.0))
        response = await apply_travel_metrics(snapshot, None)

        assert response.forests == snapshot.forests
        assert response.nearest_legal_spot is None
        assert response.warnings == ["existing warning"]

    @pytest.mark.asyncio
    async def test_sorted_nearest_first_unmapped_last(self) -> None:
        snapshot = _snapshot(
            _forest("nowhere", None, None),
            _forest("far", -35.28, 149.13),
            _forest("near", -33.7, 150.3),
        )
        response = await apply_travel_metrics(snapshot, SYDNEY)

        assert [f.id for f in response.forests] == ["near", "far", "nowhere"]
        assert response.forests[2].distance_km is None
        assert response.forests[0].travel_duration_minutes is None
        assert response.nearest_legal_spot is not None
        assert response.nearest_legal_spot.id == "near"

    @pytest.mark.asyncio
    async def test_route_metrics_replace_straight_line(self) -> None:
        routes = FakeRoutes({"far": RouteMetric(distance_km=10.0, duration_minutes=12.0)})
        snapshot = _snapshot(_forest("far", -35.28, 149.13), _forest("near", -33.7, 150.3))
        response = await apply_travel_metrics(snapshot, SYDNEY, routes)

        assert [f.id for f in response.forests] == ["far", "near"]
        assert response.forests[0].travel_duration_minutes == 12.0
        assert response.nearest_legal_spot is not None
        assert response.nearest_legal_spot.travel_duration_minutes == 12.0
        assert [t.id for t in routes.calls[0]] == ["far", "near"]

    @pytest.mark.asyncio
    async def test_route_failure_falls_back_with_warning(self) -> None:
        routes = FakeRoutes(error=TransientProviderError("OSRM request failed"))
        response = await apply_travel_metrics(_snapshot(_forest("a", -33.7, 150.3)), SYDNEY, routes)

        assert response.forests[0].distance_km is not None
        assert response.warnings == [
            "existing warning",
            "Driving distances were unavailable; showing straight-line distances.",
        ]


class TestOsrmRouteService:
    def test_table_request(self) -> None:
        session = MagicMock()
        session.get.return_value = _response(
            {
                "code": "Ok",
                "distances": [[0, 12500.0, None]],
                "durations": [[0, 900.0, None]],
            }
        )
        service = OsrmRouteService("https://osrm.example.test/", session)
        targets = [RouteTarget("a", -33.7, 150.3), RouteTarget("b", -35.0, 149.0)]

        metrics = service._table(SYDNEY, targets, avoid_tolls=True)

        assert metrics == {"a": RouteMetric(distance_km=12.5, duration_minutes=15.0)}
        url = session.get.call_args.args[0]
        assert url == (
            "https://osrm.example.test/table/v1/driving/"
            "151.2093,-33.8688;150.3,-33.7;149.0,-35.0"
        )
        params = session.get.call_args.kwargs["params"]
        assert params["sources"] == 0
        assert params["exclude"] == "toll"

    def test_tolls_allowed(self) -> None:
        session = MagicMock()
        session.get.return_value = _response({"code": "Ok", "distances": [[0]], "durations": [[0]]})
        OsrmRouteService("https://osrm.example.test", session)._table(SYDNEY, [], avoid_tolls=False)
        assert "exclude" not in session.get.call_args.kwargs["params"]

    def test_network_error_is_transient(self) -> None:
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("refused")
        with pytest.raises(TransientProviderError):
            OsrmRouteService("https://osrm.example.test", session)._table(SYDNEY, [], True)

    def test_server_error_is_transient(self) -> None:
        session = MagicMock()
        session.get.return_value = _response({}, status=503)
        with pytest.raises(TransientProviderError):
            OsrmRouteService("https://osrm.example.test", session)._table(SYDNEY, [], True)

    def test_bad_request_is_provider_error(self) -> None:
        session = MagicMock()
        session.get.return_value = _response({}, status=400)
        with pytest.raises(ProviderError) as excinfo:
            OsrmRouteService("https://osrm.example.test", session)._table(SYDNEY, [], True)
        assert not isinstance(excinfo.value, TransientProviderError)

    def test_error_code(self) -> None:
        session = MagicMock()
        session.get.return_value = _response({"code": "NoTable"})
        with pytest.raises(ProviderError, match="NoTable"):
            OsrmRouteService("https://osrm.example.test", session)._table(SYDNEY, [], True)

    @pytest.mark.asyncio
    async def test_targets_chunked(self) -> None:
        session = MagicMock()
        service = OsrmRouteService("https://osrm.example.test", session)
        targets = [RouteTarget(str(i), -33.0, 150.0) for i in range(150)]

        def table(url: str, params: dict[str, object]) -> MagicMock:
            count = url.count(";")
            row = [0.0] + [1000.0] * count
            return _response({"code": "Ok", "distances": [row], "durations": [row]})

        session.get.side_effect = table
        metrics = await service.driving_metrics(SYDNEY, targets)

        assert session.get.call_count == 2
        assert len(metrics) == 150
