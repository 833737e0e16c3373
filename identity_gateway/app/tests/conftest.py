import pytest

from identity_gateway.app.auth.flow import AuthFlow
from identity_gateway.app.auth.providers import AzureAuthProvider
from identity_gateway.app.auth.session import SessionCodec

from .support import FakeIdentityServer, make_config


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def fake_idp():
    return FakeIdentityServer()


@pytest.fixture
def provider(config, fake_idp):
    return AzureAuthProvider(config, client=fake_idp.client())


@pytest.fixture
def codec(config):
    return SessionCodec(config)


@pytest.fixture
def flow(config, provider):
    return AuthFlow(config, provider=provider)
