# ABOUTME: Switch module for Teardrop - check-in scheduling and escalation
# ABOUTME: Provides duration parsing, outcome classifiers, config, messenger, release manager and coordinator

from teardrop.switch.classifier import DeliveryOutcome, GrantOutcome, classify_delivery, classify_grant
from teardrop.switch.config import DriveConfig, ProtectedItem, SwitchConfig, TwilioConfig
from teardrop.switch.coordinator import CheckInAttempt, HeartbeatCoordinator, SwitchState
from teardrop.switch.drive import DriveClient
from teardrop.switch.duration import InvalidDuration, parse_duration
from teardrop.switch.messenger import Messenger, SendFailed
from teardrop.switch.recipient import InvalidRecipient, parse_recipient
from teardrop.switch.release import ItemReleaseManager, ReleaseState

__all__ = [
    "parse_duration",
    "InvalidDuration",
    "parse_recipient",
    "InvalidRecipient",
    "DeliveryOutcome",
    "GrantOutcome",
    "classify_delivery",
    "classify_grant",
    "SwitchConfig",
    "TwilioConfig",
    "DriveConfig",
    "ProtectedItem",
    "Messenger",
    "SendFailed",
    "DriveClient",
    "ItemReleaseManager",
    "ReleaseState",
    "HeartbeatCoordinator",
    "CheckInAttempt",
    "SwitchState",
]
