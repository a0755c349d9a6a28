"""FastAPI dependencies for the objects built in the app lifespan."""

from fastapi import Request

from soundlink.core.analytics import AnalyticsAggregator
from soundlink.core.attribution import AttributionEngine
from soundlink.core.ingestor import PlayIngestor


def get_engine(request: Request) -> AttributionEngine:
    return request.app.state.services.engine


def get_ingestor(request: Request) -> PlayIngestor:
    return request.app.state.services.ingestor


def get_aggregator(request: Request) -> AnalyticsAggregator:
    return request.app.state.services.aggregator
