import logging

from dialog_stt.adapters.provider_factory import provider_spec
from dialog_stt.config import DialogSttConfig
from dialog_stt.domain.protocol import ProviderDescriptor

logger = logging.getLogger(__name__)


class SettingsModelResolver:
    """Resolves the configured STT provider from settings and the key file."""

    def __init__(self, config: DialogSttConfig) -> None:
        self._config = config

    def get_current_model_info(self, capability: str) -> ProviderDescriptor | None:
        if capability != "stt":
            return None

        api_key = self._config.read_secret(self._config.api_key_file)
        if not api_key:
            logger.warning("No API key found for %s (%s)", self._config.stt_provider, self._config.api_key_file or "not configured")
            return None

        spec = provider_spec(self._config.stt_provider)
        return ProviderDescriptor(
            provider_id=self._config.stt_provider,
            model_id=self._config.stt_model or spec.default_model,
            credential_ref=api_key,
            protocol_family=spec.family,
            api_url=self._config.api_url,
        )
