"""暴露给模型的工具清单。

每个 ActionName 对应一个 ToolDef；relevant_tool_defs 按功能区挑选子集，
减少每次请求携带的 schema 体积。
"""

from typing import Any, Dict, Iterable, List

from assistant_core.tools.definitions import ActionName, ToolDef, ToolParam

CRM_COLLECTIONS = ["investors", "customers", "partners"]
NOTE_COLLECTIONS = CRM_COLLECTIONS + [
    "contacts",
    "platformTasks",
    "investorTasks",
    "customerTasks",
    "partnerTasks",
    "marketing",
    "marketingTasks",
    "financialTasks",
    "documents",
]
TASK_CATEGORIES = [
    "platformTasks",
    "investorTasks",
    "customerTasks",
    "partnerTasks",
    "marketingTasks",
    "financialTasks",
]
PRIORITIES = ["Low", "Medium", "High"]


def _s(description: str = "", **schema: Any) -> Dict[str, Any]:
    out: Dict[str, Any] = {"type": "string", **schema}
    if description:
        out["description"] = description
    return out


def _n(description: str = "") -> Dict[str, Any]:
    return {"type": "number", "description": description} if description else {"type": "number"}


def _obj(**props: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "object", "properties": props}


def _tool(action: ActionName, summary: str, required: Iterable[str], /, **props: Dict[str, Any]) -> ToolDef:
    req = set(required)
    params = {
        name: ToolParam(
            name=name,
            description=schema.get("description", ""),
            required=name in req,
            schema={k: v for k, v in schema.items() if k != "description"},
        )
        for name, schema in props.items()
    }
    return ToolDef(name=action.value, description=summary, params=params)


_CRM_FIELDS = dict(
    name=_s(), details=_s(), amount=_n(), stage=_s(), contactPerson=_s(), email=_s(), phone=_s()
)
_CONTACT_FIELDS = dict(name=_s(), role=_s(), email=_s(), phone=_s())
_MEETING_FIELDS = dict(title=_s(), date=_s(), attendees=_s(), agenda=_s())
_MARKETING_FIELDS = dict(
    title=_s(), description=_s(), status=_s(), budget=_n(), startDate=_s(), endDate=_s()
)
_NOTE_TARGET = dict(
    collection=_s("The collection where the item exists.", enum=NOTE_COLLECTIONS),
    itemId=_s("The ID of the item."),
    crmItemId=_s('Required if collection is "contacts". The ID of the parent CRM item.'),
)


TOOL_DEFS: Dict[ActionName, ToolDef] = {
    ActionName(t.name): t
    for t in [
        _tool(
            ActionName.CREATE_TASK,
            "Creates a new task for a specific category. Optionally assign it to a team member by user ID (UUID).",
            ["category", "text", "priority"],
            category=_s("The category of the task.", enum=TASK_CATEGORIES),
            text=_s("The content or description of the task."),
            priority=_s("The priority of the task.", enum=PRIORITIES),
            dueDate=_s("Optional. Due date in YYYY-MM-DD format."),
            assignedTo=_s("Optional. User ID (UUID) of the assignee. Do NOT use email addresses."),
        ),
        _tool(
            ActionName.UPDATE_TASK,
            "Updates an existing task. To find the taskId, look at the dashboard context.",
            ["taskId", "updates"],
            taskId=_s("The ID of the task to update."),
            updates=_obj(
                text=_s(),
                status=_s(enum=["Todo", "InProgress", "Done"]),
                priority=_s(enum=PRIORITIES),
                dueDate=_s(),
            ),
        ),
        _tool(
            ActionName.ADD_NOTE,
            "Adds a note to a CRM item, task, document, or marketing item.",
            ["collection", "itemId", "noteText"],
            noteText=_s("The content of the note."),
            **_NOTE_TARGET,
        ),
        _tool(
            ActionName.UPDATE_NOTE,
            "Updates an existing note on an item.",
            ["collection", "itemId", "noteTimestamp", "newText"],
            noteTimestamp=_n("The timestamp of the note to update."),
            newText=_s("The new content for the note."),
            **_NOTE_TARGET,
        ),
        _tool(
            ActionName.DELETE_NOTE,
            "Deletes a note from an item.",
            ["collection", "itemId", "noteTimestamp"],
            noteTimestamp=_n("The timestamp of the note to delete."),
            **_NOTE_TARGET,
        ),
        _tool(
            ActionName.CREATE_CRM_ITEM,
            "Creates a new CRM item (investor, customer, or partner).",
            ["collection", "name"],
            collection=_s("The type of CRM item to create.", enum=CRM_COLLECTIONS),
            **_CRM_FIELDS,
        ),
        _tool(
            ActionName.UPDATE_CRM_ITEM,
            "Updates an existing CRM item.",
            ["collection", "itemId", "updates"],
            collection=_s(enum=CRM_COLLECTIONS),
            itemId=_s("The ID of the item to update."),
            updates=_obj(**_CRM_FIELDS),
        ),
        _tool(
            ActionName.CREATE_CONTACT,
            "Creates a new contact for a CRM item.",
            ["collection", "crmItemId", "name", "email"],
            collection=_s(enum=CRM_COLLECTIONS),
            crmItemId=_s("The ID of the parent CRM item."),
            **_CONTACT_FIELDS,
        ),
        _tool(
            ActionName.UPDATE_CONTACT,
            "Updates an existing contact.",
            ["collection", "crmItemId", "contactId", "updates"],
            collection=_s(enum=CRM_COLLECTIONS),
            crmItemId=_s(),
            contactId=_s(),
            updates=_obj(**_CONTACT_FIELDS),
        ),
        _tool(
            ActionName.DELETE_CONTACT,
            "Deletes a contact from a CRM item.",
            ["collection", "crmItemId", "contactId"],
            collection=_s(enum=CRM_COLLECTIONS),
            crmItemId=_s(),
            contactId=_s(),
        ),
        _tool(
            ActionName.CREATE_MEETING,
            "Creates a new meeting for a CRM item.",
            ["collection", "crmItemId", "title", "date"],
            collection=_s(enum=CRM_COLLECTIONS),
            crmItemId=_s(),
            **_MEETING_FIELDS,
        ),
        _tool(
            ActionName.UPDATE_MEETING,
            "Updates an existing meeting.",
            ["collection", "crmItemId", "meetingId", "updates"],
            collection=_s(enum=CRM_COLLECTIONS),
            crmItemId=_s(),
            meetingId=_s(),
            updates=_obj(**_MEETING_FIELDS),
        ),
        _tool(
            ActionName.DELETE_MEETING,
            "Deletes a meeting from a CRM item.",
            ["collection", "crmItemId", "meetingId"],
            collection=_s(enum=CRM_COLLECTIONS),
            crmItemId=_s(),
            meetingId=_s(),
        ),
        _tool(
            ActionName.LOG_FINANCIALS,
            "Logs financial metrics (MRR, GMV, signups) for a specific date.",
            ["date", "mrr", "gmv", "signups"],
            date=_s("Date in YYYY-MM-DD format."),
            mrr=_n("Monthly Recurring Revenue."),
            gmv=_n("Gross Merchandise Value."),
            signups=_n("Number of signups."),
        ),
        _tool(
            ActionName.CREATE_EXPENSE,
            "Records a business expense.",
            ["date", "category", "amount", "description"],
            date=_s("Date in YYYY-MM-DD format."),
            category=_s("Expense category, e.g. Software, Marketing, Travel."),
            amount=_n("Expense amount."),
            description=_s(),
            vendor=_s(),
            paymentMethod=_s(),
        ),
        _tool(
            ActionName.DELETE_ITEM,
            "Deletes an item from a collection.",
            ["collection", "itemId"],
            collection=_s(enum=NOTE_COLLECTIONS),
            itemId=_s(),
        ),
        _tool(
            ActionName.CREATE_MARKETING_ITEM,
            "Creates a new marketing campaign or initiative.",
            ["title", "status"],
            **{**_MARKETING_FIELDS, "status": _s(enum=["Planning", "Active", "Completed"])},
        ),
        _tool(
            ActionName.UPDATE_MARKETING_ITEM,
            "Updates an existing marketing item.",
            ["itemId", "updates"],
            itemId=_s(),
            updates=_obj(**_MARKETING_FIELDS),
        ),
        _tool(
            ActionName.UPDATE_SETTINGS,
            "Updates workspace settings.",
            ["settings"],
            settings=_obj(companyName=_s(), industry=_s(), goals=_s()),
        ),
        _tool(
            ActionName.UPLOAD_DOCUMENT,
            "Uploads a new document to the file library.",
            ["name", "mimeType", "content", "module"],
            name=_s(),
            mimeType=_s(),
            content=_s("Base64 encoded file content."),
            module=_s(enum=["crm", "tasks", "marketing", "financial", "platform"]),
        ),
        _tool(
            ActionName.UPDATE_DOCUMENT,
            "Updates an existing document in the file library.",
            ["docId", "name", "mimeType", "content"],
            docId=_s(),
            name=_s(),
            mimeType=_s(),
            content=_s("Base64 encoded file content."),
        ),
        _tool(
            ActionName.GET_FILE_CONTENT,
            "Retrieves the content of a file from the file library. The content is returned in the next turn; do not make it up.",
            ["fileId"],
            fileId=_s("The ID of the file to retrieve."),
        ),
        _tool(
            ActionName.QUERY_EMAILS,
            "Searches the connected mailbox and returns matching messages.",
            ["query"],
            query=_s("Search query, e.g. a sender, subject or keyword."),
            limit=_n("Maximum number of messages to return."),
        ),
    ]
}

_CORE = [ActionName.ADD_NOTE, ActionName.UPDATE_NOTE, ActionName.DELETE_NOTE]
_FILES = [ActionName.UPLOAD_DOCUMENT, ActionName.UPDATE_DOCUMENT, ActionName.GET_FILE_CONTENT]
_TASKS = [ActionName.CREATE_TASK, ActionName.UPDATE_TASK, ActionName.DELETE_ITEM]

_FEATURE_TOOLS: Dict[str, List[ActionName]] = {
    "dashboard": _TASKS + _CORE + _FILES + [ActionName.QUERY_EMAILS],
    "platform": _TASKS + _CORE + _FILES,
    "crm": [
        ActionName.CREATE_CRM_ITEM,
        ActionName.UPDATE_CRM_ITEM,
        ActionName.CREATE_CONTACT,
        ActionName.UPDATE_CONTACT,
        ActionName.DELETE_CONTACT,
        ActionName.CREATE_MEETING,
        ActionName.UPDATE_MEETING,
        ActionName.DELETE_MEETING,
        ActionName.DELETE_ITEM,
        ActionName.QUERY_EMAILS,
    ]
    + _CORE
    + _FILES,
    "marketing": [ActionName.CREATE_MARKETING_ITEM, ActionName.UPDATE_MARKETING_ITEM] + _TASKS + _CORE + _FILES,
    "financials": [ActionName.LOG_FINANCIALS, ActionName.CREATE_EXPENSE] + _TASKS + _CORE + _FILES,
    "settings": [ActionName.UPDATE_SETTINGS] + _CORE,
}
for _alias in ("investors", "customers", "partners"):
    _FEATURE_TOOLS[_alias] = _FEATURE_TOOLS["crm"]


def default_tool_defs() -> List[ToolDef]:
    return list(TOOL_DEFS.values())


def relevant_tool_defs(feature: str) -> List[ToolDef]:
    names = _FEATURE_TOOLS.get(feature, _CORE + _FILES)
    return [TOOL_DEFS[n] for n in names]
