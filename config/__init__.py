"""配置模块：全局 settings 与套餐配置"""
