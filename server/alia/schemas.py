"""Request bodies for the public API. Field names follow the web client."""
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

JewishStatus = Literal[
    "NOT_SPECIFIED",
    "BORN_JEWISH",
    "CONVERTED_ORTHODOX",
    "CONVERTED_CONSERVATIVE",
    "CONVERTED_REFORM",
    "NOT_JEWISH",
    "IN_CONVERSION_PROCESS",
]
FamilyStatus = Literal["SINGLE", "MARRIED", "DIVORCED", "WIDOWED", "ENGAGED"]


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    confirmPassword: str
    firstName: str = Field(min_length=1)
    lastName: str = Field(min_length=1)
    phone: Optional[str] = None
    birthDate: Optional[str] = None
    nationality: Optional[str] = None
    address: Optional[str] = None
    jewishStatus: JewishStatus
    conversionRabbi: Optional[str] = None
    conversionCommunity: Optional[str] = None
    betDin: Optional[str] = None
    motivation: Optional[str] = None
    hebrewLevel: int = Field(default=0, ge=0, le=10)
    halajaKnowledge: int = Field(default=0, ge=0, le=10)
    israelExperience: Optional[str] = None
    profession: Optional[str] = None
    education: Optional[str] = None
    familyStatus: FamilyStatus = "SINGLE"
    preferredLocation: Optional[str] = None
    interestedPrograms: Optional[List[str]] = None
    acceptsTerms: bool
    acceptsPrivacy: bool
    acceptsDataProcessing: bool

    @field_validator("acceptsTerms", "acceptsPrivacy", "acceptsDataProcessing")
    @classmethod
    def must_accept(cls, value: bool) -> bool:
        if value is not True:
            raise ValueError("Debes aceptar para continuar")
        return value

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirmPassword:
            raise ValueError("Las contraseñas no coinciden")
        return self

    def profile_data(self) -> dict:
        return self.model_dump(
            exclude={
                "email",
                "password",
                "confirmPassword",
                "acceptsTerms",
                "acceptsPrivacy",
                "acceptsDataProcessing",
            }
        )


class ProfileUpdate(BaseModel):
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    phone: Optional[str] = None
    birthDate: Optional[str] = None
    nationality: Optional[str] = None
    address: Optional[str] = None
    motivation: Optional[str] = None
    jewishStatus: Optional[JewishStatus] = None
    hebrewLevel: Optional[int] = Field(default=None, ge=0, le=10)
    halajaKnowledge: Optional[int] = Field(default=None, ge=0, le=10)
    israelExperience: Optional[str] = None
    profession: Optional[str] = None
    education: Optional[str] = None
    familyStatus: Optional[FamilyStatus] = None
    preferredLocation: Optional[str] = None
    interestedPrograms: Optional[List[str]] = None


class TranslateRequest(BaseModel):
    text: str
    from_lang: str = Field(alias="from")
    to_lang: str = Field(default="es", alias="to")


class UserAnswer(BaseModel):
    questionId: str
    answerId: str
    timeSpent: Optional[int] = None


class QuizAttemptRequest(BaseModel):
    answers: List[UserAnswer]
    timeSpent: int = Field(default=0, ge=0)
