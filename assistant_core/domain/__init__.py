"""领域层模型与协议。

包含：
- models: Message / Part / ModelResponse / QuotaState / RetrievalContext 等模型。
- conversation: ScopeKey 与 ConversationStore 抽象。
- exceptions: 业务异常与错误分类。
"""
