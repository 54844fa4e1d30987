from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    anthropic_api_key: str
    anthropic_model: str = "claude-sonnet-4-20250514"
    smallest_api_key: str = ""
    deepgram_api_key: str = ""
    # Fallback credentials when a client message carries none
    github_token: str = ""
    vercel_token: str = ""
    vercel_team_id: str = ""
    vercel_api_url: str = "https://api.vercel.com"
    voice_id: str = "emily"
    voice_fallbacks: str = "jasmine,arman"
    voice_model: str = "lightning-large"
    voice_sample_rate: int = 24000
    stt_sample_rate: int = 16000
    silence_timeout_ms: int = 1500
    restart_stt_after_tts_ms: int = 500
    auto_tts_on_final: bool = False
    reply_user_name: str = Field(default="friend", alias="user_name")
    deploy_branch: str = "main"
    deploy_poll_interval: float = 3.0
    deploy_timeout: float = 120.0
    publish_ref_attempts: int = 8
    publish_ref_delay: float = 1.0
    # "generate" (pure generation) or "template" (overlay onto template_dir)
    generation_strategy: str = "generate"
    template_dir: str = ""
    allowed_origins: str = "http://localhost:3000"
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = {"env_file": ".env", "populate_by_name": True, "extra": "ignore"}

    @property
    def origins(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @property
    def voices(self) -> list[str]:
        extra = [v.strip() for v in self.voice_fallbacks.split(",") if v.strip()]
        return [self.voice_id] + [v for v in extra if v != self.voice_id]
