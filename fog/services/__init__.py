from fog.services.assignment_service import AssignmentService
from fog.services.experiment_service import ExperimentService
from fog.services.results_service import ResultsService
from fog.services.track_service import TrackService

__all__ = [
    "AssignmentService",
    "ExperimentService",
    "ResultsService",
    "TrackService",
]
