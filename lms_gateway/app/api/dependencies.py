from typing import Annotated

from fastapi import Depends, Request

from lms_gateway.app.core.config import Settings, settings as default_settings
from lms_gateway.app.services.rate_limit import AdmissionController


def get_app_settings(request: Request) -> Settings:
    """Settings the running app was built with (``create_app`` stores them)."""
    return getattr(request.app.state, "settings", default_settings)


def get_admission_controller(request: Request) -> AdmissionController:
    """The process-wide controller built by ``create_app``."""
    return request.app.state.admission_controller


SettingsDep = Annotated[Settings, Depends(get_app_settings)]
AdmissionControllerDep = Annotated[AdmissionController, Depends(get_admission_controller)]
