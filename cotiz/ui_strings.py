from __future__ import annotations

from typing import Dict, List


STATUS_GROUPS: Dict[str, List[Dict[str, str]]] = {
    "cotacao": [
        {
            "key": "draft",
            "label": "Rascunho",
            "description": "Cotacao em preparacao, ainda nao submetida.",
        },
        {
            "key": "sent",
            "label": "Enviada",
            "description": "Cotacao enviada aos fornecedores.",
        },
        {
            "key": "received",
            "label": "Propostas recebidas",
            "description": "Propostas coletadas e prontas para aprovacao.",
        },
        {
            "key": "pending_approval",
            "label": "Aguardando aprovacao",
            "description": "Cotacao aguardando decisao de um aprovador do nivel aplicado.",
        },
        {
            "key": "approved",
            "label": "Aprovada",
            "description": "Cotacao aprovada e liberada para pagamento.",
        },
        {
            "key": "rejected",
            "label": "Rejeitada",
            "description": "Cotacao rejeitada; pode ser reaberta para novo ciclo.",
        },
        {
            "key": "cancelled",
            "label": "Cancelada",
            "description": "Cotacao encerrada sem continuidade.",
        },
    ],
    "decisao": [
        {
            "key": "approved",
            "label": "Aprovada",
            "description": "Decisao favoravel registrada.",
        },
        {
            "key": "rejected",
            "label": "Rejeitada",
            "description": "Decisao contraria registrada com motivo.",
        },
    ],
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "success": {
        "approval_level_created": "Nivel de aprovacao criado com sucesso.",
        "approval_level_updated": "Nivel de aprovacao atualizado com sucesso.",
        "approval_level_deactivated": "Nivel de aprovacao desativado.",
        "approval_requested": "Cotacao enviada para aprovacao.",
        "logged_out": "Sessao encerrada.",
        "quote_updated": "Cotacao atualizada.",
        "auto_approved": "Cotacao aprovada automaticamente: valor abaixo de todos os niveis.",
        "quote_approved": "Cotacao aprovada.",
        "quote_rejected": "Cotacao rejeitada.",
        "quote_created": "Cotacao criada.",
        "quote_reopened": "Cotacao reaberta para novo ciclo de aprovacao.",
    },
    "error": {
        "action_invalid": "Acao invalida para esta operacao.",
        "amount_invalid": "Valor informado e invalido.",
        "approval_level_not_found": "Nivel de aprovacao nao encontrado.",
        "approval_levels_not_configured": "Nenhum nivel de aprovacao ativo configurado para este cliente.",
        "approval_threshold_conflict": "Ja existe um nivel ativo com este valor minimo.",
        "approver_not_authorized": "Voce nao esta entre os aprovadores do nivel desta cotacao.",
        "approvers_required": "Selecione ao menos um aprovador.",
        "approver_reserved": "O identificador 'system' e reservado e nao pode ser aprovador.",
        "auth_required": "Autenticacao necessaria.",
        "auth_invalid_credentials": "Credenciais invalidas. Tente novamente.",
        "auth_missing_credentials": "Informe email e senha.",
        "actor_required": "Usuario responsavel nao identificado.",
        "client_required": "Cliente nao identificado para esta operacao.",
        "decision_conflict": "Outra decisao foi registrada antes. Atualize a cotacao.",
        "decision_invalid": "Decisao invalida. Use 'approved' ou 'rejected'.",
        "invalid_quote_state": "A cotacao nao esta em um status que permita esta acao.",
        "max_amount_threshold_invalid": "O valor maximo deve ser maior ou igual ao valor minimo.",
        "name_required": "Informe o nome do nivel.",
        "no_changes": "Nenhuma alteracao informada.",
        "not_found": "Registro nao encontrado.",
        "order_level_invalid": "Ordem do nivel invalida.",
        "permission_denied": "Voce nao possui permissao para executar esta acao.",
        "quote_not_found": "Cotacao nao encontrada.",
        "rejection_comment_required": "Informe o motivo da rejeicao.",
        "title_required": "Informe o titulo da cotacao.",
        "unexpected_error": "Nao foi possivel concluir a operacao. Tente novamente em instantes.",
        "validation_error": "Dados informados sao invalidos.",
    },
}


NOTIFICATION_TEXTS: Dict[str, Dict[str, str]] = {
    "approval_request": {
        "title": "Nova aprovacao pendente",
        "message": "Cotacao #{quote_id} aguarda sua aprovacao no valor de R$ {amount}",
    },
    "approval_approved": {
        "title": "Cotacao aprovada",
        "message": "Sua cotacao #{quote_id} foi aprovada e pode prosseguir para pagamento",
    },
    "approval_rejected": {
        "title": "Cotacao rejeitada",
        "message": "Sua cotacao #{quote_id} foi rejeitada. Motivo: {comment}",
    },
}


def status_keys_for_group(group: str) -> List[str]:
    return [item["key"] for item in STATUS_GROUPS.get(group, [])]


def status_label(group: str, key: str | None) -> str:
    for item in STATUS_GROUPS.get(group, []):
        if item["key"] == key:
            return item["label"]
    return str(key or "")


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)


def notification_text(kind: str, **values: object) -> Dict[str, str]:
    template = NOTIFICATION_TEXTS.get(kind) or {"title": kind, "message": ""}
    return {
        "title": template["title"],
        "message": template["message"].format(**values),
    }
