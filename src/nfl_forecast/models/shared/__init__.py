"""Components shared by the estimators: feature scaling, blend selection and calibration."""

__all__: list[str] = []
