from fastapi import Depends, HTTPException
from .dependencies import get_current_profile


def _profile_type_required(required_type: str):
    def check_profile_type(profile=Depends(get_current_profile)):
        if profile.profile_type != required_type:
            raise HTTPException(status_code=403, detail=f"{required_type.capitalize()} access only")
        return profile
    return check_profile_type


company_only = _profile_type_required("company")
candidate_only = _profile_type_required("candidate")
