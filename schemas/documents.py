from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class UserDocumentCreate(BaseModel):
    user_id: str = Field(..., validation_alias=AliasChoices("user_id", "userId"))
    file_name: str = Field(..., min_length=1, validation_alias=AliasChoices("file_name", "fileName"))
    content_base64: str = Field(
        ..., description="File bytes, base64 or data URL",
        validation_alias=AliasChoices("content_base64", "contentBase64", "file_data"),
    )
    mime_type: Optional[str] = Field(None, validation_alias=AliasChoices("mime_type", "mimeType"))
    title: Optional[str] = None
    document_type: Optional[str] = Field(
        None, description="'gasto' or 'expense' feeds the payroll ledger",
        validation_alias=AliasChoices("document_type", "documentType"),
    )
    expense_amount: Optional[Decimal] = Field(None, validation_alias=AliasChoices("expense_amount", "expenseAmount"))
    expense_date: Optional[date] = Field(None, validation_alias=AliasChoices("expense_date", "expenseDate"))


class DealDocumentCreate(BaseModel):
    deal_id: str = Field(..., validation_alias=AliasChoices("deal_id", "dealId"))
    owner_id: Optional[str] = Field(None, validation_alias=AliasChoices("owner_id", "ownerId"))
    file_name: str = Field(..., min_length=1, validation_alias=AliasChoices("file_name", "fileName"))
    content_base64: str = Field(..., validation_alias=AliasChoices("content_base64", "contentBase64", "file_data"))
    mime_type: Optional[str] = Field(None, validation_alias=AliasChoices("mime_type", "mimeType"))


class SessionFileInput(BaseModel):
    file_name: Optional[str] = Field(None, validation_alias=AliasChoices("file_name", "fileName"))
    content_base64: Optional[str] = Field(None, validation_alias=AliasChoices("content_base64", "contentBase64"))
    mime_type: Optional[str] = Field(None, validation_alias=AliasChoices("mime_type", "mimeType"))
    file_size: Optional[int] = Field(None, validation_alias=AliasChoices("file_size", "fileSize"))


class SessionDocumentsCreate(BaseModel):
    deal_id: str = Field(..., validation_alias=AliasChoices("deal_id", "dealId"))
    session_id: str = Field(..., validation_alias=AliasChoices("session_id", "sesion_id", "sessionId"))
    share_with_trainer: bool = Field(
        False, validation_alias=AliasChoices("share_with_trainer", "compartir_formador", "shareWithTrainer", "share")
    )
    target_subfolder: Optional[str] = Field(
        None, validation_alias=AliasChoices("target_subfolder", "targetSubfolder")
    )
    files: List[SessionFileInput] = Field(default_factory=list)


class SessionDocumentUpdate(BaseModel):
    deal_id: str = Field(..., validation_alias=AliasChoices("deal_id", "dealId"))
    session_id: str = Field(..., validation_alias=AliasChoices("session_id", "sesion_id", "sessionId"))
    share_with_trainer: bool = Field(
        ..., validation_alias=AliasChoices("share_with_trainer", "compartir_formador", "shareWithTrainer", "share")
    )


class DocumentResponse(BaseModel):
    id: str
    file_name: str
    mime_type: str
    file_size: int
    drive_file_id: Optional[str] = None
    drive_folder_id: Optional[str] = None
    drive_web_view_link: Optional[str] = None
    drive_web_content_link: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class UserDocumentResponse(DocumentResponse):
    user_id: str
    title: Optional[str] = None
    document_type: Optional[str] = None
    created_at: Optional[datetime] = None


class DealDocumentResponse(DocumentResponse):
    deal_id: str
    owner_id: Optional[str] = None
    created_at: Optional[datetime] = None


class SessionDocumentResponse(DocumentResponse):
    deal_id: str
    session_id: str
    file_type: str
    share_with_trainer: bool
    added_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TrainerDocumentCreate(BaseModel):
    trainer_id: str = Field(..., validation_alias=AliasChoices("trainer_id", "trainerId"))
    document_type: str = Field(
        ..., description="curriculum_vitae, personales, certificados or otros",
        validation_alias=AliasChoices("document_type", "documentType"),
    )
    file_name: Optional[str] = Field(None, validation_alias=AliasChoices("file_name", "fileName", "name"))
    content_base64: str = Field(
        ..., validation_alias=AliasChoices("content_base64", "contentBase64", "fileBase64", "file_data"),
    )
    mime_type: Optional[str] = Field(None, validation_alias=AliasChoices("mime_type", "mimeType", "contentType"))
    file_size: Optional[int] = Field(None, validation_alias=AliasChoices("file_size", "fileSize"))


class TrainerDocumentResponse(DocumentResponse):
    trainer_id: str
    document_type: str
    original_file_name: Optional[str] = None
    created_at: Optional[datetime] = None
