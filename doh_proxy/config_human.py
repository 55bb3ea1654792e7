# doh_proxy/config_human.py
# Human-centered provider configuration for the DoH proxy

"""
Human-Friendly Provider Configuration

Upstream providers are declared one per section:

    [provider:cloudflare]
    name = Cloudflare
    url = https://cloudflare-dns.com/dns-query
    weight = 20
    description = General purpose resolver

Sections are read in file order, which is also the failover order.
Mistakes are reported with a suggestion for the fix instead of a
traceback.
"""

import re
from typing import Dict, List

from .config import DoHProxyConfig
from .constants import DEFAULT_PROVIDER_WEIGHT, MAX_PROVIDER_WEIGHT, MIN_PROVIDER_WEIGHT
from .errors import ConfigurationError
from .providers import Provider, ProviderRegistry, validate_provider_url

PROVIDER_SECTION_PREFIXES = ("provider:", "provider.")


class HumanFriendlyConfig(DoHProxyConfig):
    """Configuration with [provider:NAME] sections"""

    # Common typos and their corrections
    FIELD_CORRECTIONS = {
        "uri": "url",
        "ulr": "url",
        "endpoint": "url",
        "address": "url",
        "server": "url",
        "wheight": "weight",
        "wieght": "weight",
        "wight": "weight",
        "descripton": "description",
        "desc": "description",
    }

    VALID_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")

    def provider_sections(self) -> List[str]:
        return [
            section
            for section in self.config.sections()
            if section.startswith(PROVIDER_SECTION_PREFIXES)
        ]

    def get_providers(self) -> List[Provider]:
        """Providers declared in the file, in file order"""
        providers = []
        seen_urls: Dict[str, str] = {}

        for section in self.provider_sections():
            provider = self._parse_provider_section(section)
            if provider.url in seen_urls:
                print(f"Warning: [{section}] has the same url as [{seen_urls[provider.url]}]")
            seen_urls[provider.url] = section
            providers.append(provider)

        return providers

    def build_registry(self) -> ProviderRegistry:
        """Registry from the file, or the built-in providers when none are declared"""
        providers = self.get_providers()
        if not providers:
            return ProviderRegistry.default()
        return ProviderRegistry(providers)

    def _parse_provider_section(self, section: str) -> Provider:
        """Parse a single provider section with validation"""
        key = section.split(":", 1)[1] if ":" in section else section.split(".", 1)[1]

        if not self.VALID_NAME_PATTERN.match(key):
            raise ConfigurationError(
                f"Section [{section}] has invalid characters in name",
                "Use only letters, numbers, hyphens, and underscores",
            )

        options = dict(self.config.items(section))

        for typo, correct in self.FIELD_CORRECTIONS.items():
            if typo in options and correct not in options:
                raise ConfigurationError(
                    f"In [{section}]: Found '{typo}', did you mean '{correct}'?",
                    f"Change '{typo}' to '{correct}'",
                )

        if "url" not in options:
            raise ConfigurationError(
                f"Section [{section}] is missing required 'url' field",
                "Add 'url = https://<resolver>/dns-query' to this section",
            )

        # Remove any inline comments
        url = options["url"].split("#")[0].strip()
        try:
            validate_provider_url(url)
        except ConfigurationError as e:
            raise ConfigurationError(f"In [{section}]: {e.message}", e.suggestion)

        weight = DEFAULT_PROVIDER_WEIGHT
        if "weight" in options:
            try:
                weight = int(options["weight"])
                if not MIN_PROVIDER_WEIGHT <= weight <= MAX_PROVIDER_WEIGHT:
                    raise ValueError()
            except ValueError:
                raise ConfigurationError(
                    f"In [{section}]: Weight must be a number between "
                    f"{MIN_PROVIDER_WEIGHT} and {MAX_PROVIDER_WEIGHT}",
                    f"Got '{options['weight']}'",
                )

        name = options.get("name", "").strip() or key
        description = options.get("description", "").strip()

        return Provider(name=name, url=url, weight=weight, description=description)

    def validate_config(self) -> List[str]:
        """Validate configuration and return list of warnings/errors"""
        issues = []

        try:
            providers = self.get_providers()
            if not providers:
                issues.append("Info: No [provider:*] sections, using the built-in provider list")
            elif len(providers) == 1:
                issues.append("Warning: Only one provider configured, failover has nowhere to go")
            else:
                ProviderRegistry(providers)
        except ConfigurationError as e:
            issues.append(f"Error: {e.message}")

        return issues
