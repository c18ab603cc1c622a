"""Inference providers. The concrete backend is chosen once at startup from INFERENCE_PROVIDER."""
import logging

from app.core.config import Settings
from app.services.inference.base import InferenceProvider
from app.services.inference.mock import MockInferenceProvider
from app.services.inference.openrouter import OpenRouterProvider

logger = logging.getLogger(__name__)

PROVIDERS: dict[str, type[InferenceProvider]] = {
    "mock": MockInferenceProvider,
    "openrouter": OpenRouterProvider,
}


def build_provider(cfg: Settings) -> InferenceProvider:
    name = cfg.inference_provider
    if name == "mock":
        provider: InferenceProvider = MockInferenceProvider()
    elif name == "openrouter":
        provider = OpenRouterProvider(cfg)
        if not provider.is_available():
            logger.warning("OpenRouter selected but OPEN_ROUTER_KEY / OPEN_ROUTER_IMAGE_MODEL missing; calls will fail")
    else:
        raise ValueError(f"Unknown INFERENCE_PROVIDER '{name}'. Use one of: {', '.join(PROVIDERS)}")
    logger.info("Using %s inference provider", provider.name)
    return provider


__all__ = [
    "InferenceProvider",
    "MockInferenceProvider",
    "OpenRouterProvider",
    "build_provider",
]
