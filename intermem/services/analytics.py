"""
Analytics Aggregator: time-windowed summaries of interaction history.
"""

from typing import List, Optional

from ..models.core import Insights, TopicCount
from ..models.errors import BackendError
from ..models.validation import optional_text, require_int_range
from ..utils.graph_queries import GraphQuerySet
from ..utils.logging_config import get_logger
from ..utils.neptune_client import NeptuneClient
from ..utils.timestamp_utils import days_ago_ms

logger = get_logger(__name__)

MAX_WINDOW_DAYS = 3650
MAX_TRENDS = 100


class AnalyticsError(BackendError):
    """Custom exception for analytics errors."""
    pass


class AnalyticsAggregator:
    """Counts and trending topics over a day window, for one user or everyone."""

    def __init__(self, neptune: NeptuneClient, queries: Optional[GraphQuerySet] = None):
        self.neptune = neptune
        self.queries = queries or GraphQuerySet()

    def get_insights(self, user: Optional[str] = None, window_days: int = 30, trend_limit: int = 10) -> Insights:
        """
        Summarise interactions in the window.

        unique_topic_sets counts distinct topic lists, not distinct topics.

        Args:
            user: Restrict to one user (all users if None)
            window_days: Window size in days
            trend_limit: Number of trending topics to include

        Returns:
            Insights summary with trending topics
        """
        user = optional_text(user, 'user') or None
        window_days = require_int_range(window_days, 'window_days', 1, MAX_WINDOW_DAYS)
        trend_limit = require_int_range(trend_limit, 'trend_limit', 1, MAX_TRENDS)
        since = days_ago_ms(window_days)

        try:
            summary = self.neptune.execute(self.queries.insights_summary, since, user)
            trends = self.neptune.execute(self.queries.topic_trends, since, user, trend_limit)
        except BackendError as e:
            logger.error(f'Failed to compute insights: {e}')
            raise AnalyticsError(f'Insights failed: {e}')

        return Insights(period_days=window_days,
                        user=user,
                        total_interactions=summary['total'],
                        intents=summary['intents'],
                        sentiments=summary['sentiments'],
                        unique_topic_sets=summary['topic_sets'],
                        trending_topics=trends)

    def get_topic_trends(self, user: Optional[str] = None, window_days: int = 30, limit: int = 10) -> List[TopicCount]:
        """Top topics by ABOUT mentions in the window, most mentioned first."""
        user = optional_text(user, 'user') or None
        window_days = require_int_range(window_days, 'window_days', 1, MAX_WINDOW_DAYS)
        limit = require_int_range(limit, 'limit', 1, MAX_TRENDS)

        try:
            return self.neptune.execute(self.queries.topic_trends, days_ago_ms(window_days), user, limit)
        except BackendError as e:
            logger.error(f'Failed to compute topic trends: {e}')
            raise AnalyticsError(f'Topic trends failed: {e}')
