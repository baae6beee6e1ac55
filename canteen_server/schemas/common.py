from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Error response envelope"""
    success: bool = Field(False, description="Request failed")
    error_code: str = Field(description="Error code")
    message: str = Field(description="Error message")
    details: dict = Field(default_factory=dict, description="Error details")

    model_config = {
        "json_schema_extra": {
            "example": {
                "success": False,
                "error_code": "INSUFFICIENT_BALANCE",
                "message": "Insufficient balance, you can only afford 2 meals",
                "details": {"balance": -600, "total_cost": 600,
                            "overdraft_allowance": 1000, "affordable_meals": 2},
            }
        }
    }


# documented failure responses shared by every v1 route
ERROR_RESPONSES = {
    status: {"model": ErrorResponse}
    for status in (400, 401, 403, 404, 409, 500)
}
