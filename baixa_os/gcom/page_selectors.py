# File: baixa_os/gcom/page_selectors.py
# JSF ids contain ":" and must be escaped inside CSS id selectors.

PORTAL_ORIGIN = "https://sistemas.caesb.df.gov.br"
LOGIN_URL = f"{PORTAL_ORIGIN}/seguranca/app/"
LISTING_URL = f"{PORTAL_ORIGIN}/gcom/app/atendimento/os/controleOs/controle"
CLOSURE_URL = f"{PORTAL_ORIGIN}/gcom/app/atendimento/os/baixa"

LOGIN_PATH_MARKER = "/seguranca/app"
LISTING_PATH_MARKER = "/controleOs/controle"

# Login form
LOGIN_USERNAME = "#j_username"
LOGIN_PASSWORD = "#j_password"
LOGIN_SUBMIT = "#btEntrar"
VIEW_STATE_INPUT = "input[name='javax.faces.ViewState']"


def css_id(jsf_id: str) -> str:
    """Turn a JSF client id (``form1:campo``) into a CSS id selector."""

    return "#" + jsf_id.replace(":", "\\:")


# Search stage
SEARCH_INPUT = css_id("formPesquisa:inptOs")
SEARCH_BUTTON = css_id("formPesquisa:pesquisarOrdemServico")
RESULTS_FORM = "#form1"
FORM_MESSAGES = ".ui-linha-form-messages"
SEARCH_OUTCOME = f"{RESULTS_FORM}, {FORM_MESSAGES}"
ERROR_MESSAGES = f"{FORM_MESSAGES}, .ui-messages-error"

# Closure form
START_DATE_INPUT = css_id("form1:dataInicioExecucao_input")
END_DATE_INPUT = css_id("form1:dataFimExecucao_input")
DIAGNOSIS_TEXTAREA = css_id("form1:diagnosticoBaixa")
REMEDY_TEXTAREA = css_id("form1:providenciaBaixa")
SAVE_BUTTON = css_id("form1:j_idt1115")


def radio_box(group_id: str, position: int) -> str:
    """Selector of the clickable box of the ``position``-th (0-based) option."""

    return f"{css_id(group_id)} td:nth-of-type({position + 1}) .ui-radiobutton-box"


# Confirmation dialog and server error page
CONFIRM_DIALOG = "#formValidacaolancamento"
CONFIRM_BUTTON = f"{CONFIRM_DIALOG} button:has-text('Confirmar')"
SERVER_ERROR_ICON = "#icone"
SERVER_ERROR_MESSAGE = "#msg"
SERVER_ERROR_TRACKING = "#msg b"
