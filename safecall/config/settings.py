"""Configuration loader and environment variable management"""
import os
from typing import Optional
from dotenv import load_dotenv
from pydantic import BaseModel, Field


load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class SessionConfig(BaseModel):
    """Session lifetime and conversation window"""
    idle_window_seconds: float = Field(default_factory=lambda: float(os.getenv("SESSION_IDLE_WINDOW", "1800")))
    sweep_interval_seconds: float = Field(default_factory=lambda: float(os.getenv("SESSION_SWEEP_INTERVAL", "300")))
    greeting_delay_seconds: float = Field(default_factory=lambda: float(os.getenv("GREETING_DELAY", "1.0")))
    history_window: int = Field(default_factory=lambda: int(os.getenv("HISTORY_WINDOW", "10")))
    shutdown_drain_seconds: float = Field(
        default_factory=lambda: float(os.getenv("SHUTDOWN_DRAIN_TIMEOUT", "30"))
    )
    greeting_prompt: str = Field(
        default="Hello! This is your scheduled wellness check. How are you feeling today?"
    )


class ClassifierConfig(BaseModel):
    """Threat classification call limits"""
    timeout_seconds: float = Field(default_factory=lambda: float(os.getenv("CLASSIFIER_TIMEOUT", "10")))


class EscalationConfig(BaseModel):
    """Notification fan-out pacing"""
    inter_contact_delay_seconds: float = Field(
        default_factory=lambda: float(os.getenv("ESCALATION_CONTACT_DELAY", "1.0"))
    )
    notification_max_attempts: int = Field(
        default_factory=lambda: int(os.getenv("NOTIFICATION_MAX_ATTEMPTS", "2"))
    )
    retry_wait_seconds: float = Field(default_factory=lambda: float(os.getenv("NOTIFICATION_RETRY_WAIT", "0.5")))


class CohereConfig(BaseModel):
    """Cohere conversational AI"""
    api_key: Optional[str] = Field(default_factory=lambda: os.getenv("COHERE_API_KEY") or None)
    base_url: str = Field(default_factory=lambda: os.getenv("COHERE_BASE_URL", "https://api.cohere.ai"))
    model: str = Field(default_factory=lambda: os.getenv("COHERE_MODEL", "command-r-plus"))
    timeout_seconds: float = Field(default_factory=lambda: float(os.getenv("COHERE_TIMEOUT", "15")))


class VisionConfig(BaseModel):
    """Google Cloud Vision"""
    api_key: Optional[str] = Field(default_factory=lambda: os.getenv("GOOGLE_CLOUD_VISION_KEY") or None)
    base_url: str = Field(default_factory=lambda: os.getenv("VISION_BASE_URL", "https://vision.googleapis.com"))
    timeout_seconds: float = Field(default_factory=lambda: float(os.getenv("VISION_TIMEOUT", "10")))


class TwilioConfig(BaseModel):
    """Twilio SMS and voice"""
    account_sid: Optional[str] = Field(default_factory=lambda: os.getenv("TWILIO_SID") or None)
    auth_token: Optional[str] = Field(default_factory=lambda: os.getenv("TWILIO_AUTH_TOKEN") or None)
    from_number: Optional[str] = Field(default_factory=lambda: os.getenv("TWILIO_PHONE_NUMBER") or None)
    base_url: str = Field(default_factory=lambda: os.getenv("TWILIO_BASE_URL", "https://api.twilio.com"))
    timeout_seconds: float = Field(default_factory=lambda: float(os.getenv("TWILIO_TIMEOUT", "15")))

    @property
    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)


class GatewayConfig(BaseModel):
    """WebSocket gateway"""
    host: str = Field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = Field(default_factory=lambda: int(os.getenv("PORT", "3000")))
    enable_cors: bool = Field(default_factory=lambda: _env_bool("ENABLE_CORS", "true"))


class Config(BaseModel):
    """Master configuration"""
    session: SessionConfig = Field(default_factory=SessionConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    escalation: EscalationConfig = Field(default_factory=EscalationConfig)
    cohere: CohereConfig = Field(default_factory=CohereConfig)
    vision: VisionConfig = Field(default_factory=VisionConfig)
    twilio: TwilioConfig = Field(default_factory=TwilioConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    audit_log_dir: str = Field(default_factory=lambda: os.getenv("AUDIT_LOG_DIR", "./audit_logs"))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))


# Global config instance
config = Config()
