"""项目内使用的自定义异常定义。"""


class ImageOptimizerError(Exception):
    """基础异常类型。"""


class InvalidConfigurationError(ImageOptimizerError):
    """配置不合法时抛出。"""


class UnsupportedFormatError(ImageOptimizerError):
    """无法识别或不支持的图片格式。"""


class CodecError(ImageOptimizerError):
    """候选图片编码或解码失败。"""


class ComparatorError(ImageOptimizerError):
    """感知相似度计算失败。"""


class ProfileError(ImageOptimizerError):
    """ICC 配置文件分块缺失或不一致。"""


class OutputError(ImageOptimizerError):
    """输出写入失败。"""
