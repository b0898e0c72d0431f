from reqdoll.browser.session import BrowserSession

__all__ = ['BrowserSession']
