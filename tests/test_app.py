import importlib

import pytest
from starlette.routing import Mount

from app.api.controller import app_admin, app_auth, app_driver


def test_application_imports():
    main = importlib.import_module("app.main")
    mounts = {r.path: r.app for r in main.app.routes if isinstance(r, Mount)}
    assert mounts["/api/auth"] is app_auth
    assert mounts["/api/admin"] is app_admin
    assert mounts["/api/driver"] is app_driver


@pytest.mark.parametrize(
    "subApp, paths",
    [
        (app_auth, ["/token", "/csrf"]),
        (
            app_admin,
            [
                "/account",
                "/route",
                "/route/stop",
                "/route/stop/note",
                "/route/stop/return",
                "/product",
                "/product/batch",
                "/kpi",
            ],
        ),
        (
            app_driver,
            [
                "/route",
                "/route/stop/note",
                "/route/stop/return",
                "/product/search",
                "/attendance/status",
            ],
        ),
    ],
)
def test_every_schema_builds(subApp, paths):
    # Building the OpenAPI document compiles every form and response model
    schema = subApp.openapi()
    for path in paths:
        assert path in schema["paths"]
