from .middleware import VisitTracker, install_visit_tracking
from .service import AnalyticsService

__all__ = ["AnalyticsService", "VisitTracker", "install_visit_tracking"]
