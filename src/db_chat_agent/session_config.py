from dataclasses import dataclass


@dataclass
class SessionConfig:
    temperature: float = 0.7
    max_tokens: int = 4096
    max_steps: int = 10
    title_max_chars: int = 30
