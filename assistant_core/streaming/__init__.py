"""流式回答。

- frames: 把任意切分的网络分块还原成完整的协议行。
- events: 把协议行解析成 StreamEvent。
- reducer: 把事件折叠进会话状态。
- session: 一次流式请求的生命周期（打开、消费、取消、清理）。
"""
