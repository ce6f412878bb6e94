from tests.fixtures.aws_fixtures import aws_credentials, mocked_aws, recorded_sleeps  # noqa: F401
from tests.fixtures.engine_fixtures import (  # noqa: F401
    client,
    engine,
    local_client,
    local_engine,
    local_settings,
    settings,
)
