"""Market snapshot provider.

Fetches the current pool price, short-horizon price forecasts and grid stress
indicators from the market-data service over HTTP. The payload may either be a
flat snapshot or the raw market-data shape with a list of hourly predictions.
"""

from pathlib import Path
from typing import Any

import httpx
import yaml

from ..models import MarketSnapshot
from .retry import RetryPolicy, call_with_retry

DEFAULT_RESERVE_MARGIN = 15.0
DEFAULT_FORECAST_PRICE = 50.0  # $/MWh, used for missing hourly forecast values
HOURS_PER_DAY = 24


class MarketDataError(Exception):
    """The market snapshot could not be fetched or parsed."""

    pass


def _number(value: Any, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        raise MarketDataError(f"Expected a number, got {value!r}")


def _prediction_price(predictions: list, index: int) -> float | None:
    if len(predictions) <= index:
        return None
    item = predictions[index]
    if isinstance(item, dict):
        item = item.get("ensemble_price", item.get("price"))
    return None if item is None else _number(item, 0.0)


def snapshot_from_dict(data: dict[str, Any]) -> MarketSnapshot:
    """Parse a market payload into a MarketSnapshot.

    Accepts either flat snapshot keys (`current_price`, `predicted_price_1h`,
    ...) or market-data keys (`pool_price`, `market_stress_score`,
    `predictions`). Missing values degrade to: price 0, stress 0, reserve
    margin 15%, forecasts equal to the current price.
    """
    if not isinstance(data, dict):
        raise MarketDataError(f"Unexpected market payload: {data!r}")

    current = _number(data.get("current_price", data.get("pool_price")), 0.0)
    stress = _number(data.get("grid_stress_score", data.get("market_stress_score")), 0.0)
    reserve = _number(data.get("reserve_margin_percent"), DEFAULT_RESERVE_MARGIN)

    predictions = data.get("predictions") or []
    forecast_1h = data.get("predicted_price_1h")
    if forecast_1h is None:
        forecast_1h = _prediction_price(predictions, 0)
    forecast_6h = data.get("predicted_price_6h")
    if forecast_6h is None:
        forecast_6h = _prediction_price(predictions, 5)

    return MarketSnapshot(
        current_price=current,
        predicted_price_1h=_number(forecast_1h, current),
        predicted_price_6h=_number(forecast_6h, current),
        grid_stress_score=stress,
        reserve_margin_percent=reserve,
    )


def parse_hourly_forecast(values: list[Any]) -> list[float]:
    """Normalise a 24-hour price curve, filling gaps with DEFAULT_FORECAST_PRICE."""
    if len(values) != HOURS_PER_DAY:
        raise MarketDataError(f"Expected {HOURS_PER_DAY} hourly prices, got {len(values)}")
    prices = []
    for value in values:
        if isinstance(value, dict):
            value = value.get("price", value.get("ensemble_price"))
        prices.append(_number(value, DEFAULT_FORECAST_PRICE))
    return prices


class HttpMarketSnapshotProvider:
    """Reads market snapshots from the market-data service."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 15.0,
        retry: RetryPolicy | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.retry = retry or RetryPolicy()
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _get_json(self, path: str, action: str) -> Any:
        def fetch():
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.get(f"{self.base_url}{path}", headers=self._headers())
                response.raise_for_status()
                return response.json()

        try:
            return call_with_retry(fetch, action, self.retry)
        except httpx.HTTPError as e:
            raise MarketDataError(f"Market data request failed: {e}") from e
        except ValueError as e:
            raise MarketDataError(f"Market data response was not JSON: {e}") from e

    def get_snapshot(self) -> MarketSnapshot:
        data = self._get_json("/snapshot", "market.snapshot")
        return snapshot_from_dict(data)

    def get_hourly_forecast(self) -> list[float]:
        """Fetch the 24-hour price forecast for load scheduling."""
        data = self._get_json("/forecast", "market.forecast")
        if isinstance(data, dict):
            data = data.get("prices", data.get("predictions", []))
        return parse_hourly_forecast(list(data or []))


class FileSnapshotProvider:
    """Reads a snapshot from a YAML or JSON file, for dry runs of the rule set."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def get_snapshot(self) -> MarketSnapshot:
        try:
            with open(self.path) as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise MarketDataError(f"Could not read snapshot file {self.path}: {e}") from e
        return snapshot_from_dict(data)
