"""
Audio Recognition Module for SoundScout

Records a short sample, identifies it with ACRCloud and keeps a history of
confirmed discoveries, gated by per-account rate and monthly quotas.
"""

from .capture import AudioCaptureController, AudioSample, RecordingState, SoundDeviceRecorder
from .acrcloud import RecognitionGateway
from .encoder import SampleEncoder
from .engine import RecognitionOrchestrator, SessionContext, create_orchestrator
from .persistence import Discovery, DiscoveryPersister, Location
from .quota import QuotaGuard, SubscriptionTier
from .results import ErrorCode, Matched, MatchKind, NotFound, RecognitionError, classify

__all__ = [
    'AudioCaptureController',
    'AudioSample',
    'RecordingState',
    'SoundDeviceRecorder',
    'RecognitionGateway',
    'SampleEncoder',
    'RecognitionOrchestrator',
    'SessionContext',
    'create_orchestrator',
    'Discovery',
    'DiscoveryPersister',
    'Location',
    'QuotaGuard',
    'SubscriptionTier',
    'ErrorCode',
    'Matched',
    'MatchKind',
    'NotFound',
    'RecognitionError',
    'classify',
]
