"""
Configuration for the schedule analyzer service.
Values come from SCHEDULE_ANALYZER_* environment variables.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

ENV_PREFIX = 'SCHEDULE_ANALYZER_'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _env(name, default=None):
    return os.environ.get(ENV_PREFIX + name, default)


@dataclass
class Config:
    debug: bool = False
    host: str = '127.0.0.1'
    port: int = 5000
    log_level: str = 'INFO'

    # External generative service used for reordering and discussion
    assistant_url: Optional[str] = None
    assistant_api_key: Optional[str] = None
    assistant_timeout: float = 30.0

    default_schedule: str = 'R1(X); W1(X); R2(X); W2(X); C1; C2'

    @classmethod
    def from_env(cls):
        defaults = cls()
        return cls(
            debug=_env('DEBUG', '').lower() == 'true',
            host=_env('HOST', defaults.host),
            port=int(_env('PORT', defaults.port)),
            log_level=_env('LOG_LEVEL', defaults.log_level).upper(),
            assistant_url=_env('ASSISTANT_URL') or None,
            assistant_api_key=_env('ASSISTANT_API_KEY') or None,
            assistant_timeout=float(_env('ASSISTANT_TIMEOUT', defaults.assistant_timeout)),
            default_schedule=_env('DEFAULT_SCHEDULE', defaults.default_schedule)
        )

    def to_flask(self):
        """Settings in the upper-case form Flask's app.config expects"""
        return {
            'DEBUG': self.debug,
            'ASSISTANT_URL': self.assistant_url,
            'ASSISTANT_API_KEY': self.assistant_api_key,
            'ASSISTANT_TIMEOUT': self.assistant_timeout,
            'DEFAULT_SCHEDULE': self.default_schedule
        }


def configure_logging(level='INFO'):
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
