"""领域层模型。

包含：
- models: 流式事件（StreamEvent）与 FunctionCallRecord。
- conversation: 会话与消息的不可变模型。
- mentions: MentionReference / MentionQueryState 等 @mention 模型。
- exceptions: 业务异常类型定义。
"""
