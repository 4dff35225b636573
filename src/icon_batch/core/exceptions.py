"""项目内使用的自定义异常定义。"""


class IconBatchError(Exception):
    """基础异常类型。"""


class InvalidConfigurationError(IconBatchError):
    """配置不合法时抛出。"""
