"""
Configuration management for VideoReach
"""

import os
from typing import Dict, Optional, Tuple
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Config:
    """Application configuration"""

    # Supabase
    SUPABASE_URL: str = os.getenv('SUPABASE_URL', '')
    SUPABASE_SERVICE_KEY: str = os.getenv('SUPABASE_SERVICE_KEY', '')

    # Gemini / Veo
    GEMINI_API_KEY: str = os.getenv('GEMINI_API_KEY', '')
    CONTENT_MODEL: str = os.getenv('CONTENT_MODEL', 'gemini-2.0-flash')
    VEO_MODEL: str = os.getenv('VEO_MODEL', 'veo-3.1-fast-generate-preview')

    # Content generation
    CONTENT_CALL_TIMEOUT_SECONDS: float = float(os.getenv('CONTENT_CALL_TIMEOUT_SECONDS', '30'))
    CONTENT_MAX_ATTEMPTS: int = int(os.getenv('CONTENT_MAX_ATTEMPTS', '3'))

    # Video synthesis
    VEO_POLL_INTERVAL_SECONDS: float = float(os.getenv('VEO_POLL_INTERVAL_SECONDS', '5'))
    VEO_MAX_WAIT_SECONDS: float = float(os.getenv('VEO_MAX_WAIT_SECONDS', '600'))
    VIDEO_BUCKET: str = os.getenv('VIDEO_BUCKET', 'personalized-videos')
    PLACEHOLDER_VIDEO_BASE_URL: str = 'https://placeholder-video.com'
    MAX_VIDEO_PROMPT_CHARS: int = 500

    # Batch processing
    BATCH_SIZE: int = 5
    INTER_BATCH_DELAY_SECONDS: float = 2.0
    RETRY_DELAY_SECONDS: float = 1.0
    STALE_CLAIM_MINUTES: int = int(os.getenv('STALE_CLAIM_MINUTES', '30'))
    DEFAULT_GOAL: str = 'Schedule a call'

    # Per-owner limits for campaign runs: action -> (limit, window_seconds).
    RATE_LIMITS: Dict[str, Tuple[int, int]] = {
        'video-generation': (
            int(os.getenv('VIDEO_GENERATION_RATE_LIMIT', '2000')),
            int(os.getenv('VIDEO_GENERATION_RATE_WINDOW_SECONDS', '3600')),
        ),
        'ai-generation': (
            int(os.getenv('AI_GENERATION_RATE_LIMIT', '16000')),
            int(os.getenv('AI_GENERATION_RATE_WINDOW_SECONDS', '3600')),
        ),
    }

    # Flat per-video fee by tier (USD)
    TIER_VIDEO_COST: Dict[str, float] = {
        'basic': 0.02,
        'smart': 0.05,
        'advanced': 0.15,
    }

    # Average pipeline time per recipient by tier, used for planning estimates
    TIER_SECONDS_PER_RECIPIENT: Dict[str, float] = {
        'basic': 5.0,
        'smart': 15.0,
        'advanced': 30.0,
    }

    @classmethod
    def validate(cls) -> bool:
        """Validate required configuration"""
        required = {
            'SUPABASE_URL': cls.SUPABASE_URL,
            'SUPABASE_SERVICE_KEY': cls.SUPABASE_SERVICE_KEY,
        }

        missing = [k for k, v in required.items() if not v]

        if missing:
            raise ValueError(f"Missing required configuration: {', '.join(missing)}")

        return True

    @classmethod
    def get(cls, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get configuration value"""
        return getattr(cls, key, default)
