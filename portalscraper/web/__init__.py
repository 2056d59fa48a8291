from .portalscraper_api import server as server
from .portalscraper_mgr import ServerManager as ServerManager
