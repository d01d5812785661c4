from __future__ import annotations

from typing import Dict, List


FRIENDLY_TERMS: Dict[str, str] = {
    "app_name": "Plataforma Cotacoes",
    "quote": "Cotacao",
    "proposal": "Proposta",
    "approval": "Aprovacao",
    "payment": "Pagamento",
    "supplier": "Fornecedor",
    "invitation_letter": "Carta convite",
    "campaign": "Campanha",
    "tenant": "Condominio",
}


STATUS_GROUPS: Dict[str, List[Dict[str, str]]] = {
    "cotacao": [
        {"key": "draft", "label": "Rascunho", "description": "Cotacao em preparacao, ainda nao enviada."},
        {"key": "sent", "label": "Enviada", "description": "Cotacao enviada aos fornecedores."},
        {"key": "receiving", "label": "Recebendo propostas", "description": "Fornecedores enviando propostas."},
        {"key": "received", "label": "Propostas recebidas", "description": "Janela de propostas encerrada."},
        {"key": "under_review", "label": "Em aprovacao", "description": "Aguardando decisao do aprovador."},
        {"key": "approved", "label": "Aprovada", "description": "Proposta vencedora definida."},
        {"key": "rejected", "label": "Rejeitada", "description": "Cotacao reprovada na aprovacao."},
        {"key": "finalized", "label": "Finalizada", "description": "Processo concluido."},
        {"key": "cancelled", "label": "Cancelada", "description": "Cotacao encerrada sem continuidade."},
    ],
    "proposta": [
        {"key": "pending", "label": "Pendente", "description": "Proposta aguardando analise."},
        {"key": "approved", "label": "Aprovada", "description": "Proposta selecionada."},
        {"key": "rejected", "label": "Nao selecionada", "description": "Proposta nao selecionada."},
    ],
    "aprovacao": [
        {"key": "pending", "label": "Pendente", "description": "Aguardando aprovador."},
        {"key": "approved", "label": "Aprovada", "description": "Aprovacao concedida."},
        {"key": "rejected", "label": "Rejeitada", "description": "Aprovacao negada."},
    ],
    "pagamento": [
        {"key": "pending", "label": "Aguardando pagamento", "description": "Cobranca emitida."},
        {"key": "in_escrow", "label": "Em custodia", "description": "Valor retido ate a confirmacao da entrega."},
        {"key": "completed", "label": "Liberado", "description": "Valor liberado ao fornecedor."},
        {"key": "disputed", "label": "Em disputa", "description": "Liberacao suspensa por disputa."},
        {"key": "cancelled", "label": "Cancelado", "description": "Pagamento cancelado."},
        {"key": "overdue", "label": "Vencido", "description": "Cobranca vencida sem pagamento."},
        {"key": "refunded", "label": "Estornado", "description": "Valor devolvido ao cliente."},
    ],
    "entrega": [
        {"key": "scheduled", "label": "Agendada", "description": "Aguardando confirmacao da entrega."},
        {"key": "delivered", "label": "Entregue", "description": "Entrega confirmada pelo cliente."},
        {"key": "cancelled", "label": "Cancelada", "description": "Entrega cancelada."},
    ],
    "documento": [
        {"key": "pending", "label": "Pendente", "description": "Documento aguardando validacao."},
        {"key": "validated", "label": "Validado", "description": "Documento aprovado."},
        {"key": "rejected", "label": "Rejeitado", "description": "Documento recusado."},
        {"key": "expired", "label": "Vencido", "description": "Documento com validade expirada."},
    ],
    "fornecedor": [
        {"key": "pending", "label": "Pendente", "description": "Cadastro aguardando documentos."},
        {"key": "active", "label": "Ativo", "description": "Fornecedor apto a receber cotacoes."},
        {"key": "inactive", "label": "Inativo", "description": "Fornecedor desativado."},
    ],
    "carta_convite": [
        {"key": "draft", "label": "Rascunho", "description": "Carta em preparacao."},
        {"key": "sent", "label": "Enviada", "description": "Carta enviada aos fornecedores."},
        {"key": "cancelled", "label": "Cancelada", "description": "Carta cancelada."},
    ],
    "resposta_convite": [
        {"key": "pending", "label": "Aguardando", "description": "Fornecedor ainda nao respondeu."},
        {"key": "accepted", "label": "Aceito", "description": "Fornecedor aceitou participar."},
        {"key": "declined", "label": "Recusado", "description": "Fornecedor recusou o convite."},
        {"key": "no_interest", "label": "Sem interesse", "description": "Fornecedor sem interesse."},
    ],
    "campanha": [
        {"key": "draft", "label": "Rascunho", "description": "Campanha em edicao."},
        {"key": "sending", "label": "Enviando", "description": "Envio em andamento."},
        {"key": "sent", "label": "Enviada", "description": "Campanha enviada."},
        {"key": "failed", "label": "Falhou", "description": "Envio interrompido por falha."},
    ],
}


DOCUMENT_TYPE_LABELS: Dict[str, str] = {
    "cnpj": "Cartao CNPJ",
    "contrato_social": "Contrato Social",
    "certidao_regularidade_fiscal": "Certidao de Regularidade Fiscal",
    "certidao_inss": "Certidao INSS",
    "certidao_fgts": "Certidao FGTS",
    "alvara": "Alvara de Funcionamento",
    "certificado_iso": "Certificado ISO",
    "apolice_seguro": "Apolice de Seguro",
    "certidao_trabalhista": "Certidao Trabalhista",
    "outros": "Outros",
}


UI_TEXTS: Dict[str, str] = {
    "impact.cancel_quote": "Fornecedores deixam de enviar propostas para esta cotacao.",
    "impact.delete_quote": "O rascunho e seus itens serao removidos definitivamente.",
    "impact.approve_proposal": "As demais propostas pendentes serao rejeitadas automaticamente.",
    "impact.confirm_delivery": "O valor em custodia sera liberado ao fornecedor.",
    "impact.cancel_payment": "A cobranca sera cancelada.",
    "impact.send_campaign": "Os emails serao disparados para todos os contatos do segmento.",
    "impact.cancel_invitation_letter": "Os fornecedores nao poderao mais responder a carta.",
    "impact.delete_supplier_document": "O arquivo sera removido do armazenamento.",
    "proposal.not_selected": "Proposta nao selecionada",
    "notification.quote_received.title": "Nova cotacao recebida",
    "notification.proposal_received.title": "Nova proposta recebida",
    "notification.proposal_approved.title": "Proposta aprovada",
    "notification.proposal_rejected.title": "Proposta nao selecionada",
    "notification.approval_requested.title": "Aprovacao pendente",
    "notification.approval_decided.title": "Aprovacao concluida",
    "notification.payment_status.title": "Pagamento atualizado",
    "notification.delivery_confirmed.title": "Entrega confirmada",
    "notification.document_reviewed.title": "Documento analisado",
    "notification.invitation_letter.title": "Nova carta convite",
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "success": {
        "login_ok": "Login realizado com sucesso.",
        "logout_ok": "Sessao encerrada.",
        "quote_created": "Cotacao criada com sucesso.",
        "quote_updated": "Cotacao atualizada.",
        "quote_deleted": "Cotacao excluida.",
        "quote_cancelled": "Cotacao cancelada.",
        "quote_sent": "Cotacao enviada aos fornecedores.",
        "quote_status_updated": "Status atualizado.",
        "quote_finalized": "Cotacao finalizada.",
        "proposal_sent": "Sua proposta foi enviada com sucesso.",
        "proposal_approved": "Cotacao aprovada.",
        "proposal_rejected": "Proposta rejeitada.",
        "approval_requested": "Enviado para aprovacao.",
        "approval_auto_approved": "Valor dentro do limite. Cotacao aprovada automaticamente.",
        "approval_approved": "Aprovacao concedida.",
        "approval_rejected": "Aprovacao rejeitada.",
        "approval_status_fixed": "Status da cotacao sincronizado com a aprovacao.",
        "approval_level_created": "Nivel de aprovacao criado com sucesso.",
        "approval_level_updated": "Nivel de aprovacao atualizado com sucesso.",
        "approval_level_deleted": "Nivel de aprovacao excluido com sucesso.",
        "payment_created": "Pagamento criado com sucesso.",
        "payment_cancelled": "Pagamento cancelado.",
        "payment_disputed": "Disputa aberta. A liberacao do valor foi suspensa.",
        "delivery_confirmed": "Entrega confirmada com sucesso! Pagamento liberado para o fornecedor.",
        "delivery_code_regenerated": "Novo codigo de confirmacao gerado.",
        "webhook_processed": "Evento processado.",
        "supplier_created": "Fornecedor cadastrado com sucesso.",
        "supplier_updated": "Fornecedor atualizado.",
        "supplier_status_updated": "Status do fornecedor atualizado.",
        "cnpj_found": "Fornecedor encontrado.",
        "document_uploaded": "Documento enviado.",
        "document_validated": "Documento aprovado.",
        "document_rejected": "Documento rejeitado.",
        "document_deleted": "O documento foi removido com sucesso.",
        "category_created": "Categoria criada com sucesso.",
        "category_updated": "Categoria atualizada.",
        "category_deleted": "Categoria excluida.",
        "invitation_letter_created": "Carta convite criada com sucesso.",
        "invitation_letter_updated": "Carta convite atualizada.",
        "invitation_letter_sent": "Carta convite enviada aos fornecedores.",
        "invitation_letter_cancelled": "Carta convite cancelada.",
        "invitation_letter_deleted": "Carta convite excluida.",
        "invitation_response_saved": "Resposta enviada!",
        "quote_reminders_sent": "Lembretes enviados aos fornecedores pendentes.",
        "contact_created": "Contato adicionado.",
        "contacts_imported": "Importacao concluida.",
        "contact_unsubscribed": "Contato descadastrado.",
        "campaign_created": "Campanha criada.",
        "campaign_updated": "Campanha atualizada.",
        "campaign_sent": "Campanha enviada com sucesso.",
        "notification_read": "Notificacao marcada como lida.",
        "notifications_read": "Notificacoes atualizadas.",
    },
    "error": {
        "action_not_allowed_for_status": "Esta acao nao e permitida para o status atual.",
        "action_invalid": "Acao invalida para esta operacao.",
        "auth_required": "Autenticacao necessaria.",
        "auth_invalid_credentials": "Credenciais invalidas. Tente novamente.",
        "auth_missing_credentials": "Informe email e senha.",
        "confirmation_required": "Confirme explicitamente esta acao critica para continuar.",
        "permission_denied": "Voce nao possui permissao para executar esta acao.",
        "rate_limit_exceeded": "Muitas requisicoes. Tente novamente em instantes.",
        "not_found": "Registro nao encontrado.",
        "tenant_invalid": "Identificador de condominio invalido.",
        "no_changes": "Nenhuma alteracao informada.",
        "status_invalid": "Status informado e invalido para esta etapa.",
        "status_transition_invalid": "Transicao de status nao permitida.",
        "status_requires_workflow": "Este status so pode ser definido pelo fluxo de aprovacao.",
        "title_required": "Titulo obrigatorio.",
        "title_length_invalid": "O titulo deve ter entre 3 e 200 caracteres.",
        "items_required": "Informe ao menos um item valido.",
        "quantity_invalid": "Quantidade invalida.",
        "deadline_invalid": "Prazo invalido. Informe uma data futura.",
        "quote_not_found": "Cotacao nao encontrada.",
        "quote_locked": "Cotacao bloqueada para alteracoes nesta etapa.",
        "cancellation_reason_required": "Informe o motivo do cancelamento.",
        "supplier_ids_required": "Selecione ao menos um fornecedor.",
        "suppliers_not_found": "Nenhum fornecedor valido encontrado.",
        "supplier_not_found": "Fornecedor nao encontrado.",
        "supplier_not_invited": "Fornecedor nao convidado para esta cotacao.",
        "supplier_name_required": "Informe o nome do fornecedor.",
        "supplier_cnpj_duplicated": "Ja existe um fornecedor com este CNPJ.",
        "email_invalid": "Email invalido.",
        "proposal_not_found": "Proposta nao encontrada.",
        "proposal_closed": "Cotacao nao aceita novas propostas neste status.",
        "proposal_already_decided": "Proposta ja analisada.",
        "total_amount_invalid": "Valor total invalido.",
        "delivery_time_invalid": "Prazo de entrega invalido.",
        "approval_not_found": "Aprovacao nao encontrada.",
        "approval_already_decided": "Esta aprovacao ja foi concluida.",
        "approval_comments_required": "Por favor, informe o motivo da rejeicao.",
        "approval_amount_missing": "Cotacao sem valor aprovado para envio a aprovacao.",
        "approval_level_not_found": "Nivel de aprovacao nao encontrado.",
        "approval_level_name_required": "Informe o nome do nivel.",
        "approval_level_threshold_invalid": "Valor limite invalido.",
        "approval_level_order_invalid": "Ordem do nivel invalida.",
        "approval_level_approvers_required": "Informe ao menos um aprovador.",
        "payment_not_found": "Pagamento nao encontrado.",
        "payment_already_exists": "Ja existe pagamento ativo para esta cotacao.",
        "payment_quote_not_approved": "Apenas cotacoes aprovadas podem gerar pagamento.",
        "dispute_reason_required": "Informe o motivo da disputa.",
        "webhook_unauthorized": "Token do webhook invalido.",
        "webhook_payload_invalid": "Payload do webhook invalido.",
        "CODE_NOT_FOUND": "Codigo de confirmacao nao encontrado.",
        "CODE_ALREADY_USED": "Este codigo ja foi utilizado.",
        "CODE_EXPIRED": "Codigo de confirmacao expirado. Solicite um novo codigo.",
        "PERMISSION_DENIED": "Voce nao tem permissao para confirmar esta entrega.",
        "escrow_release_failed": "Nao foi possivel liberar o pagamento. O codigo continua valido.",
        "cnpj_required": "Informe o CNPJ.",
        "cnpj_invalid": "CNPJ invalido. Verifique os digitos informados.",
        "cnpj_not_found": "CNPJ nao encontrado na Receita Federal.",
        "cnpj_lookup_unavailable": "Consulta de CNPJ indisponivel no momento.",
        "cnpj_lookup_rate_limited": "Limite de consultas de CNPJ atingido. Tente novamente em instantes.",
        "document_not_found": "Documento nao encontrado.",
        "document_type_invalid": "Tipo de documento invalido.",
        "document_file_required": "Selecione um arquivo para envio.",
        "document_file_too_large": "Arquivo excede o tamanho maximo de 10MB.",
        "document_extension_invalid": "Formato de arquivo nao suportado.",
        "document_already_reviewed": "Documento ja analisado.",
        "rejection_reason_required": "Por favor, informe o motivo da rejeicao.",
        "expiry_date_invalid": "Data de validade invalida.",
        "category_not_found": "Categoria nao encontrada.",
        "category_name_required": "Informe o nome da categoria.",
        "category_duplicated": "Ja existe uma categoria com este nome.",
        "category_in_use": "Nao e possivel excluir: categoria em uso por itens de cotacao.",
        "invitation_letter_not_found": "Carta convite nao encontrada.",
        "invitation_letter_locked": "Carta convite ja enviada ou cancelada.",
        "invitation_letter_already_cancelled": "Carta convite ja cancelada.",
        "invitation_token_invalid": "Convite nao encontrado.",
        "invitation_token_expired": "Convite expirado.",
        "quote_token_invalid": "Link de resposta nao encontrado.",
        "quote_token_expired": "Link de resposta expirado.",
        "invitation_already_answered": "Convite ja respondido.",
        "invitation_response_invalid": "Resposta informada e invalida.",
        "contact_email_duplicated": "Contato ja cadastrado.",
        "contact_not_found": "Contato nao encontrado.",
        "import_file_required": "Envie um arquivo CSV para importacao.",
        "campaign_not_found": "Campanha nao encontrada.",
        "campaign_fields_required": "Assunto e conteudo sao obrigatorios.",
        "campaign_already_sent": "Campanha ja foi enviada.",
        "campaign_no_recipients": "Nenhum contato encontrado para o segmento selecionado.",
        "segment_criteria_invalid": "Criterio de segmentacao invalido.",
        "notification_not_found": "Notificacao nao encontrada.",
        "email_rejected": "O provedor de email recusou a mensagem.",
        "email_unavailable": "Servico de email indisponivel no momento.",
        "integration_unavailable": "Servico externo indisponivel no momento.",
        "unexpected_error": "Nao foi possivel concluir a operacao. Tente novamente em instantes.",
    },
    "confirm": {
        "cancel_quote": "Confirma o cancelamento da cotacao?",
        "delete_quote": "Confirma a exclusao do rascunho?",
        "approve_proposal": "Confirma a aprovacao desta proposta?",
        "confirm_delivery": "Confirma o recebimento da entrega?",
        "cancel_payment": "Confirma o cancelamento do pagamento?",
        "send_campaign": "Confirma o envio da campanha?",
        "cancel_invitation_letter": "Confirma o cancelamento da carta convite?",
        "delete_supplier_document": "Confirma a exclusao do documento?",
    },
}


def status_keys_for_group(group: str) -> List[str]:
    return [item["key"] for item in STATUS_GROUPS.get(group, [])]


def status_items_for_group(group: str) -> List[Dict[str, str]]:
    return list(STATUS_GROUPS.get(group, []))


def status_label(group: str, key: str | None, default: str | None = None) -> str:
    for item in STATUS_GROUPS.get(group, []):
        if item["key"] == key:
            return item["label"]
    if default is not None:
        return default
    return str(key or "")


def document_type_label(document_type: str | None) -> str:
    return DOCUMENT_TYPE_LABELS.get(str(document_type or ""), str(document_type or ""))


def get_ui_text(key: str, default: str | None = None) -> str:
    if key in UI_TEXTS:
        return UI_TEXTS[key]
    if default is not None:
        return default
    return key


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


def confirm_message(key: str, default: str | None = None) -> str:
    return get_message("confirm", key, default)


def frontend_bundle() -> Dict[str, object]:
    return {
        "terms": dict(FRIENDLY_TERMS),
        "status_groups": {group: status_items_for_group(group) for group in STATUS_GROUPS},
        "document_types": [
            {"key": key, "label": label} for key, label in DOCUMENT_TYPE_LABELS.items()
        ],
        "messages": {category: dict(entries) for category, entries in MESSAGES.items()},
    }
