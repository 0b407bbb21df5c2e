"""版本信息管理"""

__version__ = "0.3.0"

VERSION_INFO = {
    'major': 0,
    'minor': 3,
    'patch': 0,
    'status': 'beta'  # dev, alpha, beta, rc, stable
}


def get_version_info():
    """获取详细版本信息"""
    return VERSION_INFO
