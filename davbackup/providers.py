"""
WebDAV provider presets.

Each preset is just a base URL and an authentication scheme. Providers that
have switched off WebDAV access stay listed but refuse to be selected.
"""

from dataclasses import dataclass
from typing import Optional

from .config import ConfigurationError


@dataclass(frozen=True)
class ProviderPreset:
    name: str
    base_url: str
    auth_scheme: str = 'basic'
    available: bool = True
    unavailable_reason: Optional[str] = None


PROVIDERS = {
    'yandex': ProviderPreset('yandex', 'https://webdav.yandex.ru/'),
    # Google Drive through the dav-pocket.appspot.com proxy
    'google': ProviderPreset('google', 'https://dav-pocket.appspot.com/docso/'),
    # DropBox through the dropdav.com proxy
    'dropbox': ProviderPreset('dropbox', 'https://dav.dropdav.com/'),
    'cloudme': ProviderPreset('cloudme', 'https://webdav.cloudme.com/{login}/xios/', 'digest'),
    'mail': ProviderPreset(
        'mail', 'https://webdav.cloud.mail.ru/',
        available=False,
        unavailable_reason='Mail.ru temporarily disabled access to WebDAV'
    ),
    'onedrive': ProviderPreset(
        'onedrive', 'https://d.docs.live.net/{cid}/',
        available=False,
        unavailable_reason='Microsoft temporarily disabled access to WebDAV'
    ),
}


def resolve_provider(name: str, login: str = '', **params) -> ProviderPreset:
    """
    Look up a provider preset and fill in its URL template.

    Args:
        name: Provider name (case-insensitive)
        login: Account login, substituted for ``{login}`` in the URL
        **params: Other URL template values (e.g. ``cid`` for OneDrive)

    Returns:
        ProviderPreset with a concrete base URL

    Raises:
        ConfigurationError: If the provider is unknown or unavailable
    """
    key = (name or '').strip().lower()
    preset = PROVIDERS.get(key)

    if preset is None:
        raise ConfigurationError(
            f"Unknown provider: {name}. Valid options: {list(PROVIDERS.keys())}"
        )

    if not preset.available:
        raise ConfigurationError(f"Provider '{key}' is unavailable: {preset.unavailable_reason}")

    try:
        base_url = preset.base_url.format(login=login, **params)
    except KeyError as e:
        raise ConfigurationError(f"Provider '{key}' requires parameter {e}")

    return ProviderPreset(key, base_url, preset.auth_scheme)


def create_job(name: str, login: str, password: str, **options):
    """
    Create a BackupJob targeting a named provider.

    Args:
        name: Provider name
        login: Account login
        password: Account password
        **options: Extra BackupJob keyword arguments (temp_dir, remote_dir, timeout, ...)

    Returns:
        Configured BackupJob
    """
    from .backup.executor import BackupJob

    url_params = options.pop('url_params', None) or {}
    preset = resolve_provider(name, login, **url_params)
    return BackupJob(preset.base_url, login, password, auth_scheme=preset.auth_scheme, **options)
