"""领域动作接口与类型化注册表。

DomainActions 描述外部业务层提供的动作（任务、笔记、CRM、会议、财务、文档、邮件……），
每个方法返回 {"success": True, ...} 或 {"success": False, "message": ...}。
bind_actions 把模型给出的 camelCase 参数映射到这些方法的具名参数上，
生成 ActionName -> handler 的静态注册表供 ToolDispatcher 使用。
"""

from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from assistant_core.domain.exceptions import ValidationError
from assistant_core.tools.definitions import ActionName

ActionHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


class DomainActions(Protocol):
    async def create_task(
        self,
        category: str,
        text: str,
        priority: str,
        due_date: Optional[str] = None,
        assigned_to: Optional[str] = None,
    ) -> Dict[str, Any]: ...

    async def update_task(self, task_id: str, updates: Dict[str, Any]) -> Dict[str, Any]: ...

    async def add_note(
        self, collection: str, item_id: str, note_text: str, crm_item_id: Optional[str] = None
    ) -> Dict[str, Any]: ...

    async def update_note(
        self,
        collection: str,
        item_id: str,
        note_timestamp: float,
        new_text: str,
        crm_item_id: Optional[str] = None,
    ) -> Dict[str, Any]: ...

    async def delete_note(
        self, collection: str, item_id: str, note_timestamp: float, crm_item_id: Optional[str] = None
    ) -> Dict[str, Any]: ...

    async def create_crm_item(self, collection: str, data: Dict[str, Any]) -> Dict[str, Any]: ...

    async def update_crm_item(self, collection: str, item_id: str, updates: Dict[str, Any]) -> Dict[str, Any]: ...

    async def create_contact(self, collection: str, crm_item_id: str, data: Dict[str, Any]) -> Dict[str, Any]: ...

    async def update_contact(
        self, collection: str, crm_item_id: str, contact_id: str, updates: Dict[str, Any]
    ) -> Dict[str, Any]: ...

    async def delete_contact(self, collection: str, crm_item_id: str, contact_id: str) -> Dict[str, Any]: ...

    async def create_meeting(self, collection: str, crm_item_id: str, data: Dict[str, Any]) -> Dict[str, Any]: ...

    async def update_meeting(
        self, collection: str, crm_item_id: str, meeting_id: str, updates: Dict[str, Any]
    ) -> Dict[str, Any]: ...

    async def delete_meeting(self, collection: str, crm_item_id: str, meeting_id: str) -> Dict[str, Any]: ...

    async def log_financials(self, data: Dict[str, Any]) -> Dict[str, Any]: ...

    async def create_expense(self, data: Dict[str, Any]) -> Dict[str, Any]: ...

    async def delete_item(self, collection: str, item_id: str) -> Dict[str, Any]: ...

    async def create_marketing_item(self, data: Dict[str, Any]) -> Dict[str, Any]: ...

    async def update_marketing_item(self, item_id: str, updates: Dict[str, Any]) -> Dict[str, Any]: ...

    async def update_settings(self, settings: Dict[str, Any]) -> Dict[str, Any]: ...

    async def upload_document(self, name: str, mime_type: str, content: str, module: str) -> Dict[str, Any]: ...

    async def update_document(self, doc_id: str, name: str, mime_type: str, content: str) -> Dict[str, Any]: ...

    async def get_file_content(self, file_id: str) -> Dict[str, Any]: ...

    async def query_emails(self, query: str, limit: int = 10) -> Dict[str, Any]: ...


def _req(args: Dict[str, Any], key: str) -> Any:
    value = args.get(key)
    if value is None or value == "":
        raise ValidationError(code="MISSING_ARGUMENT", message=f"missing required argument '{key}'")
    return value


def _fields(args: Dict[str, Any], *exclude: str) -> Dict[str, Any]:
    return {k: v for k, v in args.items() if k not in exclude and not k.startswith("_")}


def bind_actions(actions: DomainActions) -> Dict[ActionName, ActionHandler]:
    """为每个 ActionName 生成一个适配参数的 handler。"""

    a = actions
    return {
        ActionName.CREATE_TASK: lambda p: a.create_task(
            _req(p, "category"),
            _req(p, "text"),
            p.get("priority") or "Medium",
            due_date=p.get("dueDate"),
            assigned_to=p.get("assignedTo"),
        ),
        ActionName.UPDATE_TASK: lambda p: a.update_task(_req(p, "taskId"), _req(p, "updates")),
        ActionName.ADD_NOTE: lambda p: a.add_note(
            _req(p, "collection"), _req(p, "itemId"), _req(p, "noteText"), crm_item_id=p.get("crmItemId")
        ),
        ActionName.UPDATE_NOTE: lambda p: a.update_note(
            _req(p, "collection"),
            _req(p, "itemId"),
            float(_req(p, "noteTimestamp")),
            _req(p, "newText"),
            crm_item_id=p.get("crmItemId"),
        ),
        ActionName.DELETE_NOTE: lambda p: a.delete_note(
            _req(p, "collection"),
            _req(p, "itemId"),
            float(_req(p, "noteTimestamp")),
            crm_item_id=p.get("crmItemId"),
        ),
        ActionName.CREATE_CRM_ITEM: lambda p: a.create_crm_item(
            _req(p, "collection"), {"name": _req(p, "name"), **_fields(p, "collection", "name")}
        ),
        ActionName.UPDATE_CRM_ITEM: lambda p: a.update_crm_item(
            _req(p, "collection"), _req(p, "itemId"), _req(p, "updates")
        ),
        ActionName.CREATE_CONTACT: lambda p: a.create_contact(
            _req(p, "collection"),
            _req(p, "crmItemId"),
            {"name": _req(p, "name"), "email": _req(p, "email"), **_fields(p, "collection", "crmItemId")},
        ),
        ActionName.UPDATE_CONTACT: lambda p: a.update_contact(
            _req(p, "collection"), _req(p, "crmItemId"), _req(p, "contactId"), _req(p, "updates")
        ),
        ActionName.DELETE_CONTACT: lambda p: a.delete_contact(
            _req(p, "collection"), _req(p, "crmItemId"), _req(p, "contactId")
        ),
        ActionName.CREATE_MEETING: lambda p: a.create_meeting(
            _req(p, "collection"),
            _req(p, "crmItemId"),
            {"title": _req(p, "title"), "date": _req(p, "date"), **_fields(p, "collection", "crmItemId")},
        ),
        ActionName.UPDATE_MEETING: lambda p: a.update_meeting(
            _req(p, "collection"), _req(p, "crmItemId"), _req(p, "meetingId"), _req(p, "updates")
        ),
        ActionName.DELETE_MEETING: lambda p: a.delete_meeting(
            _req(p, "collection"), _req(p, "crmItemId"), _req(p, "meetingId")
        ),
        ActionName.LOG_FINANCIALS: lambda p: a.log_financials(
            {"date": _req(p, "date"), **_fields(p, "date")}
        ),
        ActionName.CREATE_EXPENSE: lambda p: a.create_expense(
            {"date": _req(p, "date"), "amount": _req(p, "amount"), **_fields(p, "date", "amount")}
        ),
        ActionName.DELETE_ITEM: lambda p: a.delete_item(_req(p, "collection"), _req(p, "itemId")),
        ActionName.CREATE_MARKETING_ITEM: lambda p: a.create_marketing_item(
            {"title": _req(p, "title"), **_fields(p, "title")}
        ),
        ActionName.UPDATE_MARKETING_ITEM: lambda p: a.update_marketing_item(
            _req(p, "itemId"), _req(p, "updates")
        ),
        ActionName.UPDATE_SETTINGS: lambda p: a.update_settings(_req(p, "settings")),
        ActionName.UPLOAD_DOCUMENT: lambda p: a.upload_document(
            _req(p, "name"), _req(p, "mimeType"), _req(p, "content"), p.get("module") or "platform"
        ),
        ActionName.UPDATE_DOCUMENT: lambda p: a.update_document(
            _req(p, "docId"), _req(p, "name"), _req(p, "mimeType"), _req(p, "content")
        ),
        ActionName.GET_FILE_CONTENT: lambda p: a.get_file_content(_req(p, "fileId")),
        ActionName.QUERY_EMAILS: lambda p: a.query_emails(_req(p, "query"), int(p.get("limit") or 10)),
    }
